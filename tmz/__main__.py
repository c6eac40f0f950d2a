from tmz.cli.main import app

app(prog_name="tmz")
