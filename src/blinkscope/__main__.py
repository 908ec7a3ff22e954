from typing import Annotated

from typer import Context, Exit, Option, Typer

from blinkscope import __version__
from blinkscope.cli.start import start
from blinkscope.utils import console

app = Typer(
    name="blinkscope",
    help="BlinkScope: run the Solana Blinks debugger locally",
)
app.command(name="start", help="Clone or update the debugger and serve it locally")(start)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"blinkscope {__version__}")
        raise Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: Context,
    version: Annotated[
        bool,
        Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show the version and exit",
        ),
    ] = False,
) -> None:
    """Running `blinkscope` with no command is the same as `blinkscope start`."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(start)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
