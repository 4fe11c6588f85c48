"""CLI command for restoring (and optionally animating) a single photo.

Usage:
    python -m restora.cli.restore PHOTO [OPTIONS]

Examples:
    # Restore a photo into the current directory
    python -m restora.cli.restore grandparents.jpg

    # Double-pass restoration with a Spanish video prompt
    python -m restora.cli.restore grandparents.jpg --enhanced --language es

    # Restore, then generate a short video
    python -m restora.cli.restore grandparents.jpg --video --output out/
"""

import asyncio
import mimetypes
import re
import sys
from argparse import ArgumentParser, Namespace
from pathlib import Path

import structlog

from restora.core.config import Settings, configure_logging
from restora.core.dependencies import build_services
from restora.models.image import ImageAsset
from restora.models.video_job import VideoJob
from restora.services.exceptions import ServiceError
from restora.services.prompts import EYE_COLORS, LANGUAGE_NAMES
from restora.services.providers.replicate_client import download

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Restore an old photo and optionally animate it",
        epilog="Provider credentials are read from the environment (.env supported)",
    )

    parser.add_argument("photo", type=Path, help="Path to the photo to restore")

    parser.add_argument(
        "--enhanced",
        action="store_true",
        help="Use double-pass restoration for old, monochrome or crowded photos",
    )

    parser.add_argument(
        "--language",
        choices=sorted(LANGUAGE_NAMES),
        default="en",
        help="Language of the suggested filename and displayed prompt (default: en)",
    )

    parser.add_argument(
        "--eye-color",
        choices=EYE_COLORS,
        help="Eye color for single-subject monochrome photos",
    )

    parser.add_argument(
        "--video",
        action="store_true",
        help="Generate a short video from the restored photo",
    )

    parser.add_argument(
        "--output",
        type=Path,
        default=Path("."),
        help="Output directory (default: current directory)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


def safe_filename(name: str, fallback: str = "restored") -> str:
    """Reduce a suggested filename to URL-safe characters."""
    cleaned = re.sub(r"[^A-Za-z0-9_-]+", "-", name).strip("-")
    return cleaned[:80] or fallback


def load_photo(path: Path) -> ImageAsset:
    mime_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
    return ImageAsset(data=path.read_bytes(), mime_type=mime_type)


async def save_video(job: VideoJob, target: Path) -> Path:
    """Write a succeeded video job's output to disk, downloading URLs."""
    if job.output_data is not None:
        data = job.output_data
    else:
        data, _ = await download(job.output_url, timeout=120.0)
    target.write_bytes(data)
    return target


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (restored but video failed)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    if not args.photo.is_file():
        print(f"Error: {args.photo} is not a file", file=sys.stderr)
        return 1
    args.output.mkdir(parents=True, exist_ok=True)

    services = build_services(settings)
    pipeline = services.new_pipeline()

    logger.info(
        "cli.started",
        photo=str(args.photo),
        enhanced=args.enhanced,
        language=args.language,
        video=args.video,
    )

    try:
        analysis = await pipeline.process(
            load_photo(args.photo),
            language=args.language,
            enhanced=args.enhanced,
            eye_color=args.eye_color,
        )
    except ServiceError as e:
        logger.error("cli.restoration_failed", error=str(e), error_type=type(e).__name__)
        print(f"\nError: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nRestoration interrupted by user", file=sys.stderr)
        return 130

    stem = safe_filename(analysis.suggested_filename)
    image_path = args.output / f"{stem}.{pipeline.display_image.extension}"
    image_path.write_bytes(pipeline.display_image.data)

    print("\n" + "=" * 60)
    print("Restoration Summary")
    print("=" * 60)
    print(f"People detected: {analysis.person_count}")
    if analysis.double_pass_reasons():
        print(f"Double-pass triggers: {', '.join(analysis.double_pass_reasons())}")
    print(f"Perspective corrected: {pipeline.corrected_image is not None}")
    print(f"Restored image: {image_path}")
    print(f"Video prompt: {pipeline.display_video_prompt}")

    exit_code = 0
    if args.video:
        try:
            request = await pipeline.generate_video()
            video_path = await save_video(request.current, args.output / f"{stem}.mp4")
            print(f"Video ({request.current.provider}): {video_path}")
        except ServiceError as e:
            logger.error("cli.video_failed", error=str(e), error_type=type(e).__name__)
            print(f"Video generation failed: {e}", file=sys.stderr)
            exit_code = 2

    print("=" * 60 + "\n")
    return exit_code


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
