#!/usr/bin/env python3
"""
Veo Studio - Main Entry Point

Starts the HTTP API or generates a single video from the command line.

Usage:
    # Start server mode
    python main.py server

    # Generate a single video with the keys in GEMINI_API_KEYS
    python main.py generate --prompt "A paper boat drifting down a rainy street"

    # Show configuration
    python main.py config
"""

import argparse
import asyncio
import base64
import json
import logging
import sys
from pathlib import Path
from typing import Optional

logger = logging.getLogger("veostudio")


def setup_logging(verbose: bool = False):
    """Configure root logging."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )


def start_server(host: str, port: int):
    """Run the FastAPI app under uvicorn."""
    import uvicorn

    logger.info(f"Veo Studio server running at http://{host}:{port}")
    uvicorn.run("services.api.server:app", host=host, port=port)


def load_image(path: str) -> str:
    """Read an image file as base64."""
    return base64.b64encode(Path(path).read_bytes()).decode("ascii")


async def generate_video(
    prompt: str,
    image_path: Optional[str] = None,
    resolution: Optional[str] = None,
    aspect_ratio: Optional[str] = None,
    output_dir: str = "./output",
    wait: bool = True,
) -> Optional[str]:
    """
    Generate a video and save it locally.

    Args:
        prompt: Text description of the video
        image_path: Optional first-frame image
        resolution: Output resolution (720p, 1080p)
        aspect_ratio: Output aspect ratio (16:9, 9:16)
        output_dir: Directory for the downloaded video
        wait: Poll until the video is ready and download it

    Returns:
        Local path of the video, or the operation name when not waiting
    """
    from core.config import get_config
    from services.video_generation import GenerationRequest, VideoGenerationClient, save_video

    config = get_config()

    def print_progress(operation_name: str, percent: int):
        print(f"  [{percent:3d}%] {operation_name}")

    request = GenerationRequest(
        prompt=prompt,
        image=load_image(image_path) if image_path else None,
        resolution=resolution or config.generation.default_resolution,
        aspect_ratio=aspect_ratio or config.generation.default_aspect_ratio,
    )

    async with VideoGenerationClient(config=config, on_progress=print_progress) as client:
        started = await client.start_generation(request)
        logger.info(f"Operation: {started.operation_name}")

        if not wait:
            return started.operation_name

        api_key = client.first_key()
        status = await client.wait_for_completion(started.operation_name, api_key)
        content = await client.download_video(status.video_url, api_key)

    path = save_video(content, output_dir=output_dir)
    logger.info(f"Video ready: {path}")
    return path


def show_config() -> int:
    """Print the configuration summary; non-zero exit when invalid."""
    from core.config import get_config

    config = get_config()
    issues = config.validate()
    print(json.dumps({**config.summary(), "issues": issues}, indent=2))
    return 1 if issues else 0


def main():
    parser = argparse.ArgumentParser(
        description="Veo Studio - AI Video Generation with API key failover",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start HTTP server
    python main.py server --port 8000

    # Generate a video
    python main.py generate --prompt "Drone shot over a misty pine forest at sunrise"

    # Animate a still image in portrait
    python main.py generate -p "The cat turns its head" --image cat.png --aspect-ratio 9:16
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Server command
    server_parser = subparsers.add_parser("server", help="Start HTTP server")
    server_parser.add_argument("--host", default=None, help="Host to bind")
    server_parser.add_argument("--port", type=int, default=None, help="Port to bind")

    # Generate command
    gen_parser = subparsers.add_parser("generate", help="Generate a video")
    gen_parser.add_argument("--prompt", "-p", required=True, help="Video prompt")
    gen_parser.add_argument("--image", "-i", help="First-frame image file")
    gen_parser.add_argument("--resolution", choices=["720p", "1080p"], help="Resolution")
    gen_parser.add_argument("--aspect-ratio", choices=["16:9", "9:16"], help="Aspect ratio")
    gen_parser.add_argument("--output", "-o", default="./output", help="Output directory")
    gen_parser.add_argument(
        "--no-wait",
        action="store_true",
        help="Only start the generation and print the operation name",
    )

    # Config command
    subparsers.add_parser("config", help="Show configuration summary")

    args = parser.parse_args()
    setup_logging(args.verbose)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "server":
        from core.config import get_config

        server = get_config().server
        start_server(host=args.host or server.host, port=args.port or server.port)

    elif args.command == "generate":
        from core.key_rotation import KeyRotationError
        from services.video_generation import VideoGenerationError

        try:
            result = asyncio.run(
                generate_video(
                    prompt=args.prompt,
                    image_path=args.image,
                    resolution=args.resolution,
                    aspect_ratio=args.aspect_ratio,
                    output_dir=args.output,
                    wait=not args.no_wait,
                )
            )
        except KeyRotationError as e:
            logger.error(f"{e} ({e.details})")
            sys.exit(1)
        except VideoGenerationError as e:
            logger.error(f"Generation failed: {e}")
            sys.exit(1)

        print(result)
        sys.exit(0 if result else 1)

    elif args.command == "config":
        sys.exit(show_config())


if __name__ == "__main__":
    main()
