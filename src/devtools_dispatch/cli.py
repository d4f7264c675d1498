"""devtools-dispatch CLI.

Talks to a running engine's remote debugging endpoint. Never launches one.

Usage:
    devtools-dispatch version                          # Browser version
    devtools-dispatch targets                          # List open targets
    devtools-dispatch targets --format json

    devtools-dispatch send Browser.getVersion
    devtools-dispatch send Page.navigate '{"url": "https://example.com"}' --target <id>

    devtools-dispatch listen Page.loadEventFired --target <id> --count 1
    devtools-dispatch listen Network.requestWillBeSent --target <id> --timeout 30

    devtools-dispatch catalogue                        # Offline domain listing
    devtools-dispatch catalogue --domain Page --events
    devtools-dispatch catalogue --stability deprecated
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

import click
import httpx

from .config import DEFAULT_HTTP_ENDPOINT, DispatcherConfig
from .discovery import BrowserEndpoint
from .dispatcher import Dispatcher
from .errors import DispatchError, ProtocolError
from .protocol.commands import ROOT_SESSION_ID
from .protocol.messages import split_method
from .protocol.schema import MemberKind, Stability, default_schema

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"


def truncate(text: str | None, max_len: int = 50) -> str:
    """Truncate text for display."""
    if not text:
        return ""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def parse_params(raw: str | None) -> dict[str, Any] | None:
    """Parse a PARAMS_JSON argument into a dict."""
    if raw is None:
        return None
    try:
        params = json.loads(raw)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="PARAMS_JSON") from e
    if not isinstance(params, dict):
        raise click.BadParameter("must be a JSON object", param_hint="PARAMS_JSON")
    return params


async def open_dispatcher(endpoint: str, timeout: float | None) -> Dispatcher:
    """Connect a dispatcher to the browser behind an HTTP endpoint."""
    return await Dispatcher.connect_to_browser(
        endpoint, config=DispatcherConfig(command_timeout=timeout)
    )


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log protocol traffic (DEBUG)")
@click.option(
    "--endpoint",
    "-e",
    envvar="DEVTOOLS_ENDPOINT",
    default=DEFAULT_HTTP_ENDPOINT,
    show_default=True,
    help="HTTP debugging endpoint of the engine",
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, endpoint: str) -> None:
    """devtools-dispatch - drive a remote debugging endpoint from the shell."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj["endpoint"] = endpoint


def _run(ctx: click.Context, coro: Any) -> Any:
    """Run a coroutine, turning connection failures into a clean exit."""
    endpoint = ctx.obj["endpoint"]
    try:
        return asyncio.run(coro)
    except httpx.HTTPError as e:
        click.echo(f"Cannot reach {endpoint}: {e}", err=True)
        sys.exit(1)
    except ConnectionError as e:
        click.echo(f"Connection to {endpoint} failed: {e}", err=True)
        sys.exit(1)


@main.command("version")
@click.pass_context
def version(ctx: click.Context) -> None:
    """Show the browser version reported by the endpoint."""

    async def run() -> None:
        async with BrowserEndpoint(ctx.obj["endpoint"]) as browser:
            info = await browser.version()
        click.echo(json.dumps(info.model_dump(by_alias=True), indent=2))

    _run(ctx, run())


@main.command("targets")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
@click.pass_context
def targets(ctx: click.Context, output_format: str) -> None:
    """List the targets open in the browser.

    Examples:

        devtools-dispatch targets
        devtools-dispatch targets --format json
    """

    async def run() -> None:
        async with BrowserEndpoint(ctx.obj["endpoint"]) as browser:
            items = await browser.targets()

        if output_format == FORMAT_JSON:
            click.echo(
                json.dumps([t.model_dump(by_alias=True, exclude_none=True) for t in items], indent=2)
            )
            return

        if not items:
            click.echo("No targets found.")
            return

        click.echo(f"{'ID':<34} {'Type':<16} {'Title':<30} {'URL':<40}")
        click.echo("-" * 123)
        for t in items:
            click.echo(
                f"{t.id:<34} {t.type:<16} {truncate(t.title, 30):<30} {truncate(t.url, 40):<40}"
            )
        click.echo(f"\nTotal: {len(items)} target(s)")

    _run(ctx, run())


@main.command("send")
@click.argument("method")
@click.argument("params_json", required=False)
@click.option("--target", "-t", "target_id", help="Attach to this target and send on its session")
@click.option(
    "--timeout",
    envvar="DEVTOOLS_TIMEOUT",
    type=float,
    default=30.0,
    show_default=True,
    help="Command deadline in seconds",
)
@click.pass_context
def send(
    ctx: click.Context,
    method: str,
    params_json: str | None,
    target_id: str | None,
    timeout: float,
) -> None:
    """Send one command and print its result.

    Examples:

        devtools-dispatch send Target.getTargets
        devtools-dispatch send Runtime.evaluate '{"expression": "1+1"}' -t <id>
    """
    params = parse_params(params_json)
    try:
        split_method(method)
    except DispatchError as e:
        raise click.BadParameter(str(e), param_hint="METHOD") from e

    async def run() -> dict[str, Any]:
        dispatcher = await open_dispatcher(ctx.obj["endpoint"], timeout)
        try:
            session_id = ROOT_SESSION_ID
            if target_id:
                session_id = await dispatcher.attach(target_id)
            return await dispatcher.call(session_id, method, params)
        finally:
            await dispatcher.close()

    try:
        result = _run(ctx, run())
    except ProtocolError as e:
        click.echo(f"Error: {e}", err=True)
        if e.code is not None:
            click.echo(f"Code: {e.code}", err=True)
        sys.exit(1)
    except DispatchError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    click.echo(json.dumps(result, indent=2, ensure_ascii=False))


@main.command("listen")
@click.argument("events", nargs=-1, required=True)
@click.option("--target", "-t", "target_id", help="Attach to this target and listen on its session")
@click.option("--count", "-n", type=int, default=None, help="Stop after this many events")
@click.option(
    "--timeout",
    envvar="DEVTOOLS_TIMEOUT",
    type=float,
    default=None,
    help="Stop after this many seconds",
)
@click.option(
    "--enable/--no-enable",
    default=True,
    help="Send <Domain>.enable for every listened domain first",
)
@click.pass_context
def listen(
    ctx: click.Context,
    events: tuple[str, ...],
    target_id: str | None,
    count: int | None,
    timeout: float | None,
    enable: bool,
) -> None:
    """Print events as JSON lines.

    Examples:

        devtools-dispatch listen Target.targetCreated Target.targetDestroyed
        devtools-dispatch listen Page.loadEventFired -t <id> --count 1
    """
    try:
        names = [split_method(event) for event in events]
    except DispatchError as e:
        raise click.BadParameter(str(e), param_hint="EVENT") from e

    async def run() -> int:
        dispatcher = await open_dispatcher(ctx.obj["endpoint"], None)
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        try:
            session_id = ROOT_SESSION_ID
            if target_id:
                session_id = await dispatcher.attach(target_id)

            for domain, event in names:

                def handler(params: dict[str, Any], method: str = f"{domain}.{event}") -> None:
                    queue.put_nowait({"method": method, "params": params})

                dispatcher.subscribe(session_id, domain, event, handler)

            if enable:
                for domain in dict.fromkeys(domain for domain, _ in names):
                    try:
                        await dispatcher.send(session_id, domain, "enable")
                    except ProtocolError as e:
                        logging.getLogger(__name__).info(f"{domain}.enable failed: {e}")

            seen = 0
            loop = asyncio.get_running_loop()
            deadline = loop.time() + timeout if timeout is not None else None
            while count is None or seen < count:
                remaining = deadline - loop.time() if deadline is not None else None
                if remaining is not None and remaining <= 0:
                    break
                try:
                    message = await asyncio.wait_for(queue.get(), remaining)
                except TimeoutError:
                    break
                if session_id:
                    message["sessionId"] = session_id
                click.echo(json.dumps(message, ensure_ascii=False))
                seen += 1
            return seen
        finally:
            await dispatcher.close()

    try:
        _run(ctx, run())
    except DispatchError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)


@main.command("catalogue")
@click.option("--domain", "-d", "domain_name", help="Only this domain")
@click.option(
    "--stability",
    "-s",
    type=click.Choice([s.value for s in Stability]),
    default=None,
    help="Only members with this stability",
)
@click.option("--events", "events_only", is_flag=True, help="Only events")
@click.option("--commands", "commands_only", is_flag=True, help="Only commands")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
def catalogue(
    domain_name: str | None,
    stability: str | None,
    events_only: bool,
    commands_only: bool,
    output_format: str,
) -> None:
    """List the known domains, commands and events (offline).

    Examples:

        devtools-dispatch catalogue --domain Page
        devtools-dispatch catalogue --stability deprecated --commands
    """
    schema = default_schema()
    if domain_name is not None and schema.domain(domain_name) is None:
        raise click.BadParameter(
            f"unknown domain (known: {', '.join(schema.domains())})", param_hint="--domain"
        )

    kind = None
    if events_only != commands_only:
        kind = MemberKind.EVENT if events_only else MemberKind.COMMAND
    tier = Stability(stability) if stability else None
    domains = [domain_name] if domain_name else schema.domains()

    members = [m for d in domains for m in schema.members(d, kind=kind, stability=tier)]

    if output_format == FORMAT_JSON:
        click.echo(
            json.dumps(
                [
                    {
                        "name": m.qualified_name,
                        "kind": m.kind.value,
                        "stability": m.stability.value,
                    }
                    for m in members
                ],
                indent=2,
            )
        )
        return

    if not members:
        click.echo("No matching members.")
        return

    click.echo(f"{'Name':<50} {'Kind':<8} {'Stability':<12}")
    click.echo("-" * 72)
    for m in members:
        click.echo(f"{m.qualified_name:<50} {m.kind.value:<8} {m.stability.value:<12}")
    click.echo(f"\nTotal: {len(members)} member(s)")


if __name__ == "__main__":
    main()
