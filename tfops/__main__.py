from tfops.cli import app

app()
