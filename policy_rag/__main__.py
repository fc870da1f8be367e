from policy_rag.cli import app

app()
