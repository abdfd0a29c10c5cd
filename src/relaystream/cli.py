"""Command-line interface: ``relaystream stream | ask | structured``."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

import click
from pydantic import BaseModel, create_model
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from relaystream.client import ResponsesClient
from relaystream.config import ClientConfig, load_config
from relaystream.errors import RelayError, StructuredExhaustedError
from relaystream.events.bus import EventBus
from relaystream.request import RequestOptions, ResponsesRequest, system_item, user_item
from relaystream.types import EventType, StreamEvent, StreamEventKind

console = Console()

_FIELD_TYPES: dict[str, Any] = {
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "list": list[str],
}


def _build_client(cfg: ClientConfig, bus: EventBus | None = None) -> ResponsesClient:
    return ResponsesClient.from_config(cfg, bus=bus)


def _build_request(prompt: str, system: str | None, model: str | None) -> ResponsesRequest:
    items = [system_item(system)] if system else []
    items.append(user_item(prompt))
    return ResponsesRequest(input=items, model=model)


def _schema_from_fields(fields: tuple[str, ...]) -> type[BaseModel]:
    """Build a pydantic model from ``name:type`` pairs."""
    definitions: dict[str, Any] = {}
    for spec in fields:
        name, _, type_name = spec.partition(":")
        type_name = type_name or "str"
        if not name or type_name not in _FIELD_TYPES:
            raise click.BadParameter(
                f"expected name:type with type in {sorted(_FIELD_TYPES)}, got {spec!r}",
                param_hint="--field",
            )
        definitions[name] = (_FIELD_TYPES[type_name], ...)
    if not definitions:
        raise click.BadParameter("at least one field is required", param_hint="--field")
    return create_model("Response", **definitions)


def _run(coro: Any) -> None:
    try:
        asyncio.run(coro)
    except StructuredExhaustedError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        for record in e.all_attempts:
            console.print(f"[dim]  attempt {record.attempt}: {escape(record.error.describe())}[/dim]")
        sys.exit(1)
    except RelayError as e:
        rid = f" (request_id={e.request_id})" if e.request_id else ""
        console.print(f"[red]{e.category} error: {escape(e.message)}{rid}[/red]")
        sys.exit(1)


@click.group()
@click.option("--config", "-c", "config_path", default=None,
              help="Path to relaystream.yaml (auto-detected from CWD or ~/.config/relaystream/)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """relaystream - stream model responses over NDJSON."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)
    ctx.obj = load_config(config_path)


@main.command()
@click.argument("prompt")
@click.option("--model", "-m", default=None, help="Model id")
@click.option("--system", "-s", default=None, help="System prompt")
@click.option("--ttft-timeout", type=int, default=None, help="Time-to-first-token deadline (ms)")
@click.option("--idle-timeout", type=int, default=None, help="Idle deadline (ms)")
@click.option("--total-timeout", type=int, default=None, help="Total deadline (ms)")
@click.pass_obj
def stream(cfg: ClientConfig, prompt: str, model: str | None, system: str | None,
           ttft_timeout: int | None, idle_timeout: int | None,
           total_timeout: int | None) -> None:
    """Stream a response, printing text as it arrives."""
    options = RequestOptions(
        stream_ttft_timeout_ms=ttft_timeout,
        stream_idle_timeout_ms=idle_timeout,
        stream_total_timeout_ms=total_timeout,
    )

    async def _stream() -> None:
        bus = EventBus()
        first_token: dict[str, Any] = {}

        def on_first_token(event: StreamEvent) -> None:
            first_token.update(event.data)

        bus.subscribe(StreamEventKind.STREAM_FIRST_TOKEN, on_first_token)
        async with _build_client(cfg, bus) as client:
            events = await client.stream(_build_request(prompt, system, model), options)
            async with events:
                async for evt in events:
                    if evt.type is EventType.MESSAGE_DELTA and evt.text_delta:
                        console.print(evt.text_delta, end="", markup=False, highlight=False)
                    elif evt.type is EventType.MESSAGE_STOP:
                        console.print()
                        if evt.usage is not None:
                            console.print(
                                f"[dim]tokens: {evt.usage.input_tokens} in / "
                                f"{evt.usage.output_tokens} out "
                                f"(stop: {evt.stop_reason or '-'})[/dim]"
                            )
                    elif evt.type is EventType.TOOL_USE_STOP and evt.tool_calls:
                        for call in evt.tool_calls:
                            name = call.function.name if call.function else "?"
                            console.print(f"[cyan]tool call {call.id}: {name}[/cyan]")
        latency = first_token.get("latency_ms")
        if latency is not None:
            console.print(f"[dim]first token after {latency:.0f}ms[/dim]")

    _run(_stream())


@main.command()
@click.argument("prompt")
@click.option("--model", "-m", default=None, help="Model id")
@click.option("--system", "-s", default=None, help="System prompt")
@click.pass_obj
def ask(cfg: ClientConfig, prompt: str, model: str | None, system: str | None) -> None:
    """Send a non-streaming request and print the answer."""

    async def _ask() -> None:
        async with _build_client(cfg) as client:
            response = await client.create(_build_request(prompt, system, model))
        console.print(Panel(escape(response.text), title=response.model, border_style="blue"))
        table = Table(show_header=False, box=None)
        table.add_row("id", response.id)
        table.add_row("stop", response.stop_reason or "-")
        table.add_row(
            "usage",
            f"{response.usage.input_tokens} in / {response.usage.output_tokens} out",
        )
        for call in response.tool_calls:
            fn = call.function
            table.add_row("tool", f"{fn.name} {fn.arguments}" if fn else call.id)
        console.print(table)

    _run(_ask())


@main.command()
@click.argument("prompt")
@click.option("--field", "-f", "fields", multiple=True,
              help="Output field as name:type (str, int, float, bool, list)")
@click.option("--model", "-m", default=None, help="Model id")
@click.option("--max-retries", type=int, default=None, help="Retries after invalid output")
@click.option("--stream", "stream_mode", is_flag=True, help="Stream partial payloads instead")
@click.pass_obj
def structured(cfg: ClientConfig, prompt: str, fields: tuple[str, ...], model: str | None,
               max_retries: int | None, stream_mode: bool) -> None:
    """Ask for JSON output with the given fields."""
    schema = _schema_from_fields(fields)
    request = _build_request(prompt, None, model)

    async def _structured() -> None:
        async with _build_client(cfg) as client:
            if stream_mode:
                events = await client.stream_structured(schema, request)
                async with events:
                    async for evt in events:
                        done = ", ".join(sorted(evt.complete_fields)) or "-"
                        console.print(f"[dim]{evt.type.value} (complete: {done})[/dim]")
                        console.print_json(json.dumps(evt.payload))
                return
            result = await client.structured(schema, request, max_retries=max_retries)
        console.print_json(result.value.model_dump_json())
        console.print(f"[dim]attempts: {result.attempts}[/dim]")

    _run(_structured())


if __name__ == "__main__":
    main()
