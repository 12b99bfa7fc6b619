"""
Ojo CLI - Command-line interface for the visual assistance loop
"""

import argparse
import asyncio
import json
import sys
import threading
from typing import List, Optional

import yaml
from rich.table import Table

from . import __version__
from .analyzer import AnalyzerConfig, VisionAnalyzer, resolve_api_key
from .capture import CameraFrameSource, ImageFileFrameSource
from .config import CONFIG_CATEGORIES, DEFAULTS, config, parse_assignments
from .diagnostics import console, enable_diagnostics
from .exceptions import OjoError
from .speech import TTSConfig, TTSSpeaker, get_available_engines


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ojo",
        description="Ojo Electrónico - spoken scene descriptions from a camera",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start the assistant (ENTER toggles, q quits)
  ojo run

  # Start immediately, local Ollama model, English descriptions
  ojo run --start --provider ollama --model llava:7b --lang en

  # Describe one image and speak the result
  ojo describe photo.jpg --speak

  # Show or change configuration
  ojo config --show
  ojo config --set PACING_DELAY_MS=4000 --save
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run the assistance loop")
    run_parser.add_argument("--device", "-d", help="Camera index or stream URL")
    run_parser.add_argument("--provider", "-p", choices=["gemini", "ollama", "openai"],
                            help="Vision provider")
    run_parser.add_argument("--model", "-m", help="Vision model")
    run_parser.add_argument("--lang", "-l", help="Target language (es, en, ...)")
    run_parser.add_argument("--start", action="store_true", help="Activate on launch")
    run_parser.add_argument("--quiet", "-q", action="store_true", help="Do not speak")

    describe_parser = subparsers.add_parser("describe", help="Describe a single image file")
    describe_parser.add_argument("image", help="Path to image")
    describe_parser.add_argument("--provider", "-p", choices=["gemini", "ollama", "openai"])
    describe_parser.add_argument("--model", "-m")
    describe_parser.add_argument("--lang", "-l")
    describe_parser.add_argument("--format", "-f", choices=["text", "json", "yaml"], default="text",
                                 help="Output format")
    describe_parser.add_argument("--speak", "-s", action="store_true", help="Speak the description")

    config_parser = subparsers.add_parser("config", help="Show or change configuration")
    config_parser.add_argument("--show", action="store_true", help="Show current configuration")
    config_parser.add_argument("--set", nargs="+", metavar="KEY=VALUE", default=[],
                               help="Set values (OJO_ prefix optional)")
    config_parser.add_argument("--save", action="store_true", help="Write values to .env")

    subparsers.add_parser("check", help="Check TTS engines, camera and API keys")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    enable_diagnostics(
        level="DEBUG" if args.debug else config.get("OJO_LOG_LEVEL", "INFO"),
        log_file=config.get("OJO_LOG_FILE") or None,
    )

    if args.command is None:
        parser.print_help()
        return 1

    handlers = {
        "run": cmd_run,
        "describe": cmd_describe,
        "config": cmd_config,
        "check": cmd_check,
    }

    try:
        return handlers[args.command](args)
    except OjoError as e:
        console.print(f"[red]✗ {e}[/red]")
        return 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        return 130


def cmd_run(args) -> int:
    from .app import create_assistant

    assistant = create_assistant(
        device=args.device,
        provider=args.provider,
        model=args.model,
        language=args.lang,
        quiet=args.quiet,
    )
    try:
        asyncio.run(assistant.run(start_active=args.start))
    finally:
        assistant.controller.analyzer.close()
    return 0


def cmd_describe(args) -> int:
    analyzer_config = AnalyzerConfig.from_env(provider=args.provider, model=args.model)
    if args.lang:
        analyzer_config.target_language = args.lang

    source = ImageFileFrameSource(
        args.image,
        max_size=config.get_int("OJO_IMAGE_MAX_SIZE", 640),
        quality=config.get_int("OJO_IMAGE_QUALITY", 70),
    )
    frame = source.capture_frame()
    if frame is None:
        console.print(f"[red]✗ Cannot read image: {args.image}[/red]")
        return 1

    analyzer = VisionAnalyzer(analyzer_config)
    try:
        description = asyncio.run(analyzer.analyze(frame))
    finally:
        analyzer.close()

    if args.format == "json":
        print(json.dumps(description.to_dict(), ensure_ascii=False, indent=2))
    elif args.format == "yaml":
        print(yaml.safe_dump(description.to_dict(), allow_unicode=True, sort_keys=False), end="")
    else:
        console.print(f"[bold]{description.text}[/bold]")
        if description.detected_entities:
            console.print(f"[dim]{', '.join(description.detected_entities)}[/dim]")

    if args.speak:
        tts_config = TTSConfig.from_env()
        tts_config.language = analyzer_config.target_language
        done = threading.Event()
        TTSSpeaker(tts_config).speak(description.text, on_done=done.set)
        done.wait(timeout=60)

    return 0


def cmd_config(args) -> int:
    if args.set:
        try:
            values = parse_assignments(args.set)
        except (KeyError, ValueError) as e:
            console.print(f"[red]✗ Unknown or malformed setting: {e}[/red]")
            return 1
        for key, value in values.items():
            config.set(key, value)

    if args.save:
        config.save()
        console.print(f"[green]✓ Configuration saved to {config.env_file}[/green]")

    if args.show or not (args.set or args.save):
        values = config.to_dict(mask_secrets=True)
        for category, items in CONFIG_CATEGORIES.items():
            table = Table(title=category, show_header=True, header_style="bold")
            table.add_column("Key")
            table.add_column("Value")
            table.add_column("Description", style="dim")
            for key, label, desc in items:
                value = values.get(key, DEFAULTS.get(key, ""))
                table.add_row(key, value, desc)
            console.print(table)
    return 0


def cmd_check(args) -> int:
    table = Table(title="Ojo check", show_header=True, header_style="bold")
    table.add_column("Component")
    table.add_column("Status")

    engines = get_available_engines()
    table.add_row("TTS engines", ", ".join(engines) if engines else "[red]none found[/red]")

    provider = config.get("OJO_LLM_PROVIDER", "gemini")
    if provider == "ollama":
        key_status = f"not needed ({config.get('OJO_OLLAMA_URL')})"
    else:
        key_status = "[green]set[/green]" if resolve_api_key(provider) else "[red]missing[/red]"
    table.add_row(f"API key ({provider})", key_status)

    camera = CameraFrameSource.from_env()
    try:
        camera.start()
        camera_status = f"[green]ok[/green] ({camera.device})"
    except OjoError as e:
        camera_status = f"[red]{e}[/red]"
    finally:
        camera.stop()
    table.add_row("Camera", camera_status)

    console.print(table)
    return 0


if __name__ == "__main__":
    sys.exit(main())
