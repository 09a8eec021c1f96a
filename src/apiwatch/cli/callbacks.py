import typer

from apiwatch.models import HttpMethod


def method_callback(ctx: typer.Context, value: str):
    if ctx.resilient_parsing:
        return
    try:
        return HttpMethod.from_operation(value)
    except LookupError:
        raise typer.BadParameter(
            message=f"'{value}' is not a valid method, supported methods are: {', '.join(HttpMethod)}",
            param_hint="--method, -m",
        ) from None


def parameters_callback(values: list[str] | None) -> dict[str, list[str]]:
    """Group repeated ``name=value`` options into a parameter bundle."""
    bundle: dict[str, list[str]] = {}
    for item in values or []:
        name, separator, value = item.partition("=")
        if not separator or not name:
            raise typer.BadParameter(f"Expected name=value, got {item!r}")
        bundle.setdefault(name, []).append(value)
    return bundle
