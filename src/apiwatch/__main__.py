from apiwatch.cli.main import app

app(prog_name="apiwatch")
