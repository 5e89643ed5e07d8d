# -*- coding: utf-8 -*-
import os
import sys
import json
import uuid
import logging
import argparse
import threading
from typing import Dict, List, Optional

from tqdm import tqdm

from framekit import __version__, setup_logging
from framekit.config import (
    Config,
    FILTER_NAMES,
    QUANTIZER_NAMES,
    SUPPORTED_EXTENSIONS,
    load_config,
)
from framekit.convert import convert_batch
from framekit.errors import BatchFailedError, FrameKitError, InputValidationError, ToolUnavailableError
from framekit.faces import create_detector, suggest_crop
from framekit.manifest import Manifest, parse_manifest
from framekit.progress import ProgressChannel, Subscription

logger = logging.getLogger("framekit.cli")


def scan_for_image_files(input_dir: str) -> List[str]:
    names = []
    for item_name in sorted(os.listdir(input_dir)):
        if os.path.isfile(os.path.join(input_dir, item_name)) and item_name.lower().endswith(SUPPORTED_EXTENSIONS):
            names.append(item_name)
        else:
            logger.debug(f"  -> Debug: Skipping '{item_name}' (unsupported extension or directory).")
    return names


def read_sources(input_dir: str, file_names: List[str]) -> Dict[str, bytes]:
    sources = {}
    for file_name in file_names:
        path = os.path.join(input_dir, file_name)
        if not os.path.isfile(path):
            continue
        with open(path, 'rb') as f:
            sources[file_name] = f.read()
    return sources


def build_manifest(args: argparse.Namespace, config: Config) -> Manifest:
    if args.manifest:
        try:
            with open(args.manifest, 'r', encoding='utf-8') as f:
                manifest = parse_manifest(f.read(), config)
        except OSError as e:
            raise InputValidationError(f"Cannot read manifest '{args.manifest}': {e}") from e
    else:
        file_names = scan_for_image_files(args.input_dir)
        if not file_names:
            raise InputValidationError(f"No supported image files ({', '.join(SUPPORTED_EXTENSIONS)}) found in '{os.path.abspath(args.input_dir)}'.")
        detector = create_detector(config) if args.detect_faces else None
        images = []
        for file_name in tqdm(file_names, desc="Suggesting crops", unit="file", ncols=80, disable=len(file_names) < 2):
            with open(os.path.join(args.input_dir, file_name), 'rb') as f:
                result = suggest_crop(f.read(), detector, config, file_name=file_name)
            images.append({'fileName': file_name, 'y': result.y})
        manifest = parse_manifest({'images': images}, config)

    if args.job_id:
        manifest.job_id = args.job_id
    if manifest.job_id is None:
        manifest.job_id = uuid.uuid4().hex
    return manifest


def follow_progress(subscription: Subscription, verbose: bool):
    bar_format = '{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}{postfix}]'
    with tqdm(total=0, desc="Converting images", unit="file", ncols=80, bar_format=None if verbose else bar_format) as pbar:
        for event in subscription:
            if pbar.total != event.total:
                pbar.total = event.total
                pbar.refresh()
            if event.current > pbar.n:
                pbar.update(event.current - pbar.n)
            if event.file_name:
                pbar.set_postfix_str(event.file_name, refresh=True)
            if event.kind == 'error' and event.message:
                pbar.write(f"(!) {event.message}", file=sys.stderr)


def handle_convert_command(args: argparse.Namespace):
    config = load_config(
        args.config,
        concurrency=args.concurrency,
        quantizer=args.quantizer,
        posterize_levels=args.posterize_levels,
        resample_filter=args.filter,
        min_confidence=args.confidence,
        yunet_model_path=args.model_path,
        verbose=args.verbose or None,
    )
    setup_logging(logging.DEBUG if config.verbose else logging.INFO)
    logger.info("===== Frame Conversion Started =====")

    output_path = os.path.abspath(args.output)
    part_path = f"{output_path}.part"

    try:
        if not os.path.isdir(args.input_dir):
            raise InputValidationError(f"Input path '{args.input_dir}' is not a valid directory.")
        manifest = build_manifest(args, config)
        sources = read_sources(args.input_dir, manifest.file_names)
        os.makedirs(os.path.dirname(output_path) or '.', exist_ok=True)
    except FrameKitError as e:
        print(f"(!) {e.kind}: {e}", file=sys.stderr)
        sys.exit(2)

    channel = ProgressChannel()
    subscription = channel.subscribe(manifest.job_id)
    follower = threading.Thread(target=follow_progress, args=(subscription, config.verbose), name="progress", daemon=True)
    follower.start()

    exit_code = 0
    try:
        with open(part_path, 'wb') as sink:
            names = convert_batch(manifest, sources, sink, config=config, channel=channel)
        os.replace(part_path, output_path)
        logger.info(f"  -> Info: {len(names)} file(s) written to '{output_path}'.")
    except InputValidationError as e:
        print(f"(!) {e.kind}: {e}", file=sys.stderr)
        exit_code = 2
    except BatchFailedError as e:
        print(f"(!) Batch failed ({e.kind}) at '{e.file_name}': {e.cause}", file=sys.stderr)
        exit_code = 1
    except FrameKitError as e:
        print(f"(!) {e.kind}: {e}", file=sys.stderr)
        exit_code = 1
    except OSError as e:
        print(f"(!) Could not write '{output_path}': {e}", file=sys.stderr)
        exit_code = 1
    finally:
        subscription.close()
        follower.join(timeout=5)
        if os.path.exists(part_path):
            try:
                os.remove(part_path)
                logger.warning(f"  -> Warning: Removed partially written output file: '{part_path}'")
            except OSError as rm_e:
                logger.error(f"  -> Error: Could not remove partially written output file '{part_path}': {rm_e}")

    logger.info("===== Frame Conversion Finished =====")
    sys.exit(exit_code)


def handle_suggest_command(args: argparse.Namespace):
    config = load_config(args.config, min_confidence=args.confidence, yunet_model_path=args.model_path,
                         verbose=args.verbose or None)
    setup_logging(logging.DEBUG if config.verbose else logging.WARNING)

    try:
        with open(args.image_path, 'rb') as f:
            source = f.read()
    except OSError as e:
        print(f"(!) Cannot read '{args.image_path}': {e}", file=sys.stderr)
        sys.exit(2)

    try:
        detector = None if args.no_detect else create_detector(config)
        result = suggest_crop(source, detector, config, include_faces=args.faces,
                              file_name=os.path.basename(args.image_path))
    except ToolUnavailableError as e:
        print(f"(!) {e.kind}: {e}", file=sys.stderr)
        sys.exit(2)
    except FrameKitError as e:
        print(json.dumps(e.to_dict()), file=sys.stderr)
        sys.exit(1)

    print(json.dumps(result.to_dict(), indent=2 if args.faces else None))
    sys.exit(0)


def _create_convert_parser(subparsers: argparse._SubParsersAction):
    convert_parser = subparsers.add_parser(
        "convert",
        help="Convert images to 800x480 RGB565 bitmaps packed in a ZIP archive.",
        description="Batch conversion: crop, resize, dither and encode to 16-bit RGB565 BMP.",
        formatter_class=argparse.RawTextHelpFormatter
    )
    convert_parser.set_defaults(func=handle_convert_command)

    convert_parser.add_argument("input_dir", nargs='?', default='input',
                                help="Directory holding the source images (default: 'input').")
    convert_parser.add_argument("-m", "--manifest",
                                help="JSON manifest {\"jobId\"?: str, \"images\": [{\"fileName\": str, \"y\": number}]}.\n"
                                     "Without a manifest every supported image is converted at its suggested offset.")
    convert_parser.add_argument("-o", "--output", default='converted.zip',
                                help="Path of the ZIP archive to write (default: 'converted.zip').")
    convert_parser.add_argument("--job-id", help="Job identifier used for progress reporting.")
    convert_parser.add_argument("-j", "--concurrency", type=int,
                                help=f"Number of images converted in parallel (Default: {Config.concurrency}).")
    convert_parser.add_argument("--quantizer", choices=QUANTIZER_NAMES.keys(),
                                help="Dithering/encoding backend (Default: magick):\n" +
                                     "\n".join([f"  {k}: {v}" for k, v in QUANTIZER_NAMES.items()]))
    convert_parser.add_argument("--posterize-levels", type=int, choices=range(2, 7), metavar="[2-6]",
                                help=f"Levels per channel before dithering (Default: {Config.posterize_levels}).")
    convert_parser.add_argument("--filter", choices=FILTER_NAMES.keys(),
                                help="Resampling filter (Default: lanczos):\n" +
                                     "\n".join([f"  {k}: {v}" for k, v in FILTER_NAMES.items()]))

    face_group = convert_parser.add_argument_group('Crop Suggestion (without --manifest)')
    face_group.add_argument("--detect-faces", action="store_true", default=False,
                            help="Use YuNet face detection to place the crop band (Default: centered).")
    face_group.add_argument("-c", "--confidence", type=float,
                            help=f"Min face detection confidence (Default: {Config.min_confidence}).")
    face_group.add_argument("--model-path", help="Path to the YuNet ONNX model file. Downloaded if missing.")

    convert_parser.add_argument("--config", help="Path to a JSON configuration file to load options from.")
    convert_parser.add_argument("-v", "--verbose", action="store_true", default=False,
                                help="Enable detailed (DEBUG level) logging.")
    return convert_parser


def _create_suggest_parser(subparsers: argparse._SubParsersAction):
    suggest_parser = subparsers.add_parser(
        "suggest",
        help="Suggest the vertical crop offset for one image.",
        description="Face-aware crop suggestion. Prints {y, naturalWidth, naturalHeight[, faces]} as JSON.",
        formatter_class=argparse.RawTextHelpFormatter
    )
    suggest_parser.set_defaults(func=handle_suggest_command)

    suggest_parser.add_argument("image_path", help="Image file to analyse.")
    suggest_parser.add_argument("--faces", action="store_true", default=False,
                                help="Include the detected face boxes in the output (diagnostic mode).")
    suggest_parser.add_argument("--no-detect", action="store_true", default=False,
                                help="Skip face detection and return the centered offset.")
    suggest_parser.add_argument("-c", "--confidence", type=float,
                                help=f"Min face detection confidence (Default: {Config.min_confidence}).")
    suggest_parser.add_argument("--model-path", help="Path to the YuNet ONNX model file. Downloaded if missing.")
    suggest_parser.add_argument("--config", help="Path to a JSON configuration file to load options from.")
    suggest_parser.add_argument("-v", "--verbose", action="store_true", default=False,
                                help="Enable detailed (DEBUG level) logging.")
    return suggest_parser


def get_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Frame image converter CLI",
        formatter_class=argparse.RawTextHelpFormatter
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(title="Commands", dest="command", required=True,
                                       help="Available commands")
    _create_convert_parser(subparsers)
    _create_suggest_parser(subparsers)
    return parser


def main(argv: Optional[List[str]] = None):
    parser = get_parser()
    args = parser.parse_args(argv)
    try:
        args.func(args)
    except KeyboardInterrupt:
        print("\nOperation interrupted by user", file=sys.stderr)
        sys.exit(1)
    except FrameKitError as e:
        print(f"(!) {e.kind}: {e}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        logger.critical(f"  -> Critical: Unhandled exception: {e}", exc_info=True)
        print(f"(!) An unexpected error occurred: {e}", file=sys.stderr)
        sys.exit(3)


if __name__ == "__main__":
    main()
