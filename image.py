import argparse
import logging
import sys
import os

from imagegen.config import Config, OPTIMIZER_CHOICES, load_and_merge_config, setup_logging
from imagegen.errors import ImageGeneratorError
from imagegen.invalidate import invalidate_cache
from imagegen.params import SCALE_MODES, decode, encode, verification_hash
from imagegen.route import ImageRoute
from imagegen.urls import build_url

CONFIG_CLI_KEYS = ['root_dir', 'base_url', 'debug_mode', 'is_localhost', 'optimizer', 'verbose']


def _build_config(args: argparse.Namespace) -> Config:
    args.verbose = args.verbose or getattr(args, 'verbose_global', False)
    config = load_and_merge_config(args, CONFIG_CLI_KEYS)
    setup_logging(logging.DEBUG if config.verbose else logging.INFO)
    return config


def handle_generate_command(args: argparse.Namespace):
    config = _build_config(args)
    route = ImageRoute(config)

    try:
        response = route.handle(args.url, current_url=args.current_url)
    except Exception as e:
        print(f"CRITICAL: An unhandled critical exception occurred in generate operation: {e}", file=sys.stderr)
        sys.exit(2)

    if response.status == 301:
        print(f"Redirect: {response.headers.get('Location')}", file=sys.stderr)
        sys.exit(1)

    if args.output == '-':
        sys.stdout.buffer.write(response.body)
    else:
        output_dir = os.path.dirname(os.path.abspath(args.output))
        os.makedirs(output_dir, exist_ok=True)
        with open(args.output, 'wb') as f:
            f.write(response.body)
        print(f"HTTP {response.status} ({response.headers.get('Content-Type')}, {len(response.body)} bytes) -> {args.output}", file=sys.stderr)

    is_placeholder = 'no-store' in response.headers.get('Cache-Control', '')
    sys.exit(0 if response.status == 200 and not is_placeholder else 1)


def _create_generate_parser(subparsers: argparse._SubParsersAction, common: argparse.ArgumentParser):
    generate_parser = subparsers.add_parser(
        "generate",
        parents=[common],
        help="Serve one encoded image URL from the cache, generating it when missing.",
        description="Generate (or read from cache) the image for an encoded URL such as\n"
                    "  images/forest__w200h100-scc_abcdef.jpg",
        formatter_class=argparse.RawTextHelpFormatter
    )
    generate_parser.set_defaults(func=handle_generate_command, parser_ref=generate_parser)

    generate_parser.add_argument("url", help="Relative encoded URL, e.g. 'images/forest__w200h100_abcdef.jpg'.")
    generate_parser.add_argument("-o", "--output", default='-',
                                 help="File to write the response body to (default: '-' for stdout).")
    generate_parser.add_argument("--current-url", dest='current_url', default=None,
                                 help="Full request URL, used to build the redirect in debug mode.")
    return generate_parser


def handle_url_command(args: argparse.Namespace):
    config = _build_config(args)
    params = {'w': args.width, 'h': args.height}
    if args.scale:
        params['sc'] = args.scale
    if args.crop:
        params['cr'] = args.crop

    try:
        print(build_url(args.url, params, config))
    except ImageGeneratorError as e:
        print(f"(!) {e}", file=sys.stderr)
        sys.exit(1)


def _create_url_parser(subparsers: argparse._SubParsersAction, common: argparse.ArgumentParser):
    url_parser = subparsers.add_parser(
        "url",
        parents=[common],
        help="Build the encoded URL for an image and a set of parameters.",
        description="Build the encoded, hashed URL for an image.",
        formatter_class=argparse.RawTextHelpFormatter
    )
    url_parser.set_defaults(func=handle_url_command, parser_ref=url_parser)

    url_parser.add_argument("url", help="Image URL or path, e.g. '/images/forest.jpg' or 'https://example.com/a.png'.")
    url_parser.add_argument("-w", "--width", type=int, required=True, help="Target width in pixels.")
    url_parser.add_argument("-H", "--height", type=int, required=True, help="Target height in pixels.")
    url_parser.add_argument("--scale", choices=SCALE_MODES, default=None,
                            help="Scale mode:\n"
                                 "  r: keep ratio (fit inside the box)\n"
                                 "  c: cover (stretch to exact size)\n"
                                 "  a: absolute (shrink only)")
    url_parser.add_argument("--crop", default=None,
                            help="Crop mode: 'sm' (smart) or a corner such as 'tl', 'mc', 'br'.")
    return url_parser


def handle_hash_command(args: argparse.Namespace):
    if args.canonical:
        try:
            params = encode(decode(args.params))
        except ImageGeneratorError as e:
            print(f"(!) {e}", file=sys.stderr)
            sys.exit(1)
        print(f"{params}_{verification_hash(params)}")
    else:
        print(verification_hash(args.params))


def _create_hash_parser(subparsers: argparse._SubParsersAction):
    hash_parser = subparsers.add_parser(
        "hash",
        help="Print the verification hash of an encoded params string.",
        description="Print the 6-character verification hash of an encoded params string (e.g. 'w200h100-scc').",
        formatter_class=argparse.RawTextHelpFormatter
    )
    hash_parser.set_defaults(func=handle_hash_command, parser_ref=hash_parser)
    hash_parser.add_argument("params", help="Encoded params string, e.g. 'w200h100-scc'.")
    hash_parser.add_argument("--canonical", action="store_true", default=False,
                             help="Normalise the params (clamping, canonical order) and print '<params>_<hash>'.")
    return hash_parser


def handle_invalidate_command(args: argparse.Namespace):
    config = _build_config(args)
    try:
        removed = invalidate_cache(args.path, config.root_dir, recursive=args.recursive, progress=not args.no_progress)
    except ImageGeneratorError as e:
        print(f"(!) {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"CRITICAL: An unhandled critical exception occurred in invalidate operation: {e}", file=sys.stderr)
        sys.exit(2)
    print(f"Removed {removed} cached file(s).")


def _create_invalidate_parser(subparsers: argparse._SubParsersAction, common: argparse.ArgumentParser):
    invalidate_parser = subparsers.add_parser(
        "invalidate",
        parents=[common],
        help="Delete cached derivatives of an image or a directory.",
        description="Delete cached derivatives of a source image or of every image in a directory.",
        formatter_class=argparse.RawTextHelpFormatter
    )
    invalidate_parser.set_defaults(func=handle_invalidate_command, parser_ref=invalidate_parser)
    invalidate_parser.add_argument("path", help="Path relative to the root directory, e.g. 'images/forest.jpg' or 'images'.")
    invalidate_parser.add_argument("-r", "--recursive", action="store_true", default=False,
                                   help="Also clear subdirectories when PATH is a directory.")
    invalidate_parser.add_argument("--no-progress", dest='no_progress', action="store_true", default=False,
                                   help="Disable the progress bar.")
    return invalidate_parser


def _create_common_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    group = common.add_argument_group('Configuration Options')
    group.add_argument("--config", default=None, help="Path to a JSON configuration file.")
    group.add_argument("--root", dest='root_dir', default=None,
                       help="Web root containing source images and the '_cache' directory (default: 'www').")
    group.add_argument("--base-url", dest='base_url', default=None,
                       help="Public base URL, used for remote sources and URL building.")
    group.add_argument("--debug", dest='debug_mode', action="store_true", default=False,
                       help="Debug mode: redirect on hash mismatch and print errors into placeholders.")
    group.add_argument("--localhost", dest='is_localhost', action="store_true", default=False,
                       help="Omit 'immutable, public' from Cache-Control.")
    group.add_argument("--optimizer", choices=OPTIMIZER_CHOICES, default=None,
                       help="File size optimizer (default: shell).")
    group.add_argument("--verbose", dest='verbose', action="store_true", default=False,
                       help="Enable detailed (DEBUG level) logging.")
    return common


def main():
    parser = argparse.ArgumentParser(
        description="Image Generator CLI",
        formatter_class=argparse.RawTextHelpFormatter
    )
    parser.add_argument(
        '--version',
        action='version',
        version='%(prog)s 1.0.0'
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        dest="verbose_global",
        help="Enable verbose (DEBUG level) logging for detailed output across all commands."
    )

    subparsers = parser.add_subparsers(title="Commands", dest="command", required=True,
                                       help="Available commands")

    common = _create_common_parser()
    _create_generate_parser(subparsers, common)
    _create_url_parser(subparsers, common)
    _create_hash_parser(subparsers)
    _create_invalidate_parser(subparsers, common)

    try:
        args = parser.parse_args()
        args.func(args)

    except Exception as e:
        print(f"(!) An unexpected error occurred: {e}", file=sys.stderr)
        sys.exit(2)

if __name__ == "__main__":
    main()
