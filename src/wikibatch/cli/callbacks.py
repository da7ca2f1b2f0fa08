import typer


def params_callback(ctx: typer.Context, value: list[str] | None):
    if ctx.resilient_parsing:
        return
    for item in value or []:
        key, separator, _ = item.partition("=")
        if not separator or not key:
            raise typer.BadParameter(
                message=f"'{item}' is not a valid parameter, expected key=value",
                param_hint="PARAMS",
            )
    return value


def max_requests_callback(ctx: typer.Context, value: int | None):
    if ctx.resilient_parsing:
        return
    if value is not None and value < 1:
        raise typer.BadParameter(
            message="at least one request must be allowed",
            param_hint="--max-requests",
        )
    return value
