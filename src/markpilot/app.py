"""Command-line entry point: run one natural-language edit against a markdown file."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.client import AIClient, ClientSettings
from .ai.errors import classify_exception
from .ai.pipeline import CommandPipeline, CommandResult
from .chat.message_model import Conversation
from .editor.editor_state import EditorState
from .editor.markdown import document_from_markdown
from .editor.selection_gateway import SelectionTracker
from .services.credentials import CredentialStore
from .services.settings import Settings, SettingsStore
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, console=debug, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Path | None = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except OSError as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def build_client(settings: Settings, api_key: str | None) -> AIClient | None:
    """Return an :class:`AIClient` for ``settings`` or ``None`` without a key."""

    if not api_key:
        return None
    client_settings = ClientSettings(
        api_key=api_key,
        model=settings.model,
        base_url=settings.base_url,
        organization=settings.organization,
        request_timeout=settings.request_timeout,
        max_retries=settings.max_retries,
        retry_min_seconds=settings.retry_min_seconds,
        retry_max_seconds=settings.retry_max_seconds,
        temperature=settings.temperature,
        default_headers=settings.default_headers or None,
        debug_logging=settings.debug_logging,
    )
    return AIClient(client_settings)


def load_editor(path: Path) -> EditorState:
    text = path.read_text(encoding="utf-8")
    return EditorState(document_from_markdown(text), document_id=str(path.resolve()))


async def run_command(
    editor: EditorState,
    prompt: str,
    *,
    settings: Settings,
    client: AIClient | None,
    selection: tuple[int, int] | None = None,
) -> tuple[CommandResult | None, Conversation]:
    """Submit ``prompt`` once and return the result with the conversation."""

    tracker = SelectionTracker(editor)
    if selection is not None:
        tracker.set_persisted(*selection)
        if tracker.persisted_span is None:
            _LOGGER.warning("Ignoring selection %s; outside document bounds", selection)
    pipeline = CommandPipeline(
        editor,
        lambda: client,
        tracker=tracker,
        request_timeout=settings.request_timeout,
        tools=settings.enabled_tools,
    )
    try:
        result = await pipeline.submit(prompt)
        return result, pipeline.conversation
    finally:
        pipeline.close()
        tracker.close()
        if client is not None:
            await client.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the ``markpilot`` console script."""

    args = _parse_cli_args(argv)
    debug = _env_flag("MARKPILOT_DEBUG") or args.debug
    configure_logging(debug)

    settings_path = Path(args.settings_path).expanduser() if args.settings_path else None
    store = SettingsStore(settings_path)
    try:
        overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2
    settings = load_settings(store=store, overrides=overrides or None)
    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    credentials = CredentialStore(store.path.parent / "credentials.json")
    if args.set_api_key is not None:
        try:
            credentials.store_api_key(args.set_api_key)
        except ValueError as exc:
            print(str(exc), file=sys.stderr)
            return 2
        print(f"Stored API key {credentials.masked_key()}")
        return 0
    if args.delete_api_key:
        credentials.delete_api_key()
        print("API key deleted")
        return 0
    if args.dump_settings:
        _dump_settings(settings, store, credentials, overrides=overrides)
        return 0
    if args.test_connection:
        return _test_connection(settings, credentials)

    if args.file is None or not args.prompt:
        print("A markdown file and a prompt are required", file=sys.stderr)
        return 2
    try:
        editor = load_editor(Path(args.file))
    except OSError as exc:
        print(f"Unable to read {args.file}: {exc}", file=sys.stderr)
        return 1

    client = build_client(settings, credentials.get_api_key())
    selection = tuple(args.select) if args.select else None
    result, conversation = asyncio.run(
        run_command(editor, " ".join(args.prompt), settings=settings, client=client, selection=selection)
    )
    _print_transcript(conversation, editor, sys.stdout)
    if result is None:
        return 1
    return 0 if result.error is None else 1


def _test_connection(settings: Settings, credentials: CredentialStore) -> int:
    client = build_client(settings, credentials.get_api_key())
    if client is None:
        print("No API key configured", file=sys.stderr)
        return 1

    async def _probe() -> None:
        try:
            await client.test_connection()
        finally:
            await client.aclose()

    try:
        asyncio.run(_probe())
    except Exception as exc:
        category = classify_exception(exc)
        _LOGGER.warning("Connection test failed: %s", exc)
        print(category.message, file=sys.stderr)
        return 1
    print(f"Connected to {settings.model}")
    return 0


def _print_transcript(conversation: Conversation, editor: EditorState, stream: TextIO) -> None:
    for message in conversation:
        label = message.role
        if message.intent:
            label = f"{label} ({message.intent})"
        if message.is_error:
            label = f"{label} [error]"
        stream.write(f"{label}: {message.content}\n")
    stream.write("\n")
    stream.write(editor.plain_text())
    stream.write("\n")


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="markpilot",
        description="Apply a natural-language edit to a markdown document.",
    )
    parser.add_argument("file", nargs="?", help="Markdown file to load.")
    parser.add_argument("prompt", nargs="*", help="Instruction sent to the model.")
    parser.add_argument(
        "--select",
        nargs=2,
        type=int,
        metavar=("FROM", "TO"),
        help="Pin a document range as the selection the prompt refers to.",
    )
    parser.add_argument("--settings-path", metavar="PATH", help="Override ~/.markpilot/settings.json.")
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument("--set-api-key", metavar="KEY", help="Encrypt and store an OpenAI API key.")
    parser.add_argument("--delete-api-key", action="store_true", help="Remove the stored API key.")
    parser.add_argument("--test-connection", action="store_true", help="Check the key and model, then exit.")
    parser.add_argument("--dump-settings", action="store_true", help="Print effective settings and exit.")
    parser.add_argument("--debug", action="store_true", help="Log at DEBUG level to the console.")
    return parser.parse_args(argv)


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(type_hints.get(key), raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    optional = type(None) in get_args(annotation)
    if optional and raw_value.lower() in {"none", "null"}:
        return None
    target = _resolve_annotation(annotation)
    if target is bool:
        lowered = raw_value.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ValueError(f"Cannot coerce '{raw_value}' to a boolean.")
    if target is int:
        return int(raw_value, 10)
    if target is float:
        return float(raw_value)
    if target in (list, dict):
        try:
            value = json.loads(raw_value)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Expected JSON for {target.__name__} override") from exc
        if not isinstance(value, target):
            raise ValueError(f"Expected a JSON {target.__name__}")
        return value
    return raw_value


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in (list, dict):
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    return _resolve_annotation(args[0]) if args else origin


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    credentials: CredentialStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    meta = {
        "path": str(store.path),
        "api_key": credentials.masked_key(),
        "cli_overrides": sorted(overrides),
        "environment_variables": sorted(name for name in os.environ if name.startswith("MARKPILOT_")),
    }
    json.dump({"settings": asdict(settings), "meta": meta}, destination, indent=2)
    destination.write("\n")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
