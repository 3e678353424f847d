"""Progress notifications printed while weighting networks."""
import typer


def alert_info(message: str) -> None:
    typer.secho(f"ℹ {message}", fg=typer.colors.BLUE)


def alert_success(message: str) -> None:
    typer.secho(f"✔ {message}", fg=typer.colors.GREEN)


def heading(title: str, index: int, total: int) -> None:
    typer.echo("")
    typer.secho(f"── {title} [{index} / {total}] ──", fg=typer.colors.GREEN, bold=True)
