import argparse
import logging
import sys
from pathlib import Path

from mux_pipeline import MergePipeline, MuxingError, find_binaries, load_job
from mux_pipeline.backends import BACKENDS, select_backends
from mux_pipeline.commands import is_mp4_family


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Sync independently produced sources by frame and mux them into one file."
    )
    parser.add_argument("job", type=Path, help="JSON job description")
    parser.add_argument("--force-muxer", choices=BACKENDS, help="Use this backend if installed")
    parser.add_argument("--ffmpeg", help="Path to the ffmpeg binary")
    parser.add_argument("--mkvmerge", help="Path to the mkvmerge binary")
    parser.add_argument(
        "--print-command",
        action="store_true",
        help="Only print the muxing command, do not sync, merge or delete anything",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    job = load_job(args.job)
    binaries = find_binaries(ffmpeg=args.ffmpeg, mkvmerge=args.mkvmerge)
    pipeline = MergePipeline(job)

    if args.print_command:
        selection = select_backends(binaries, is_mp4_family(job.output), args.force_muxer)
        if selection.primary is None:
            return 1
        binary = selection.binary(selection.primary)
        print(pipeline.build_command(selection.primary).render(binary))
        return 0

    try:
        result = pipeline.run(binaries, force=args.force_muxer)
    except MuxingError as exc:
        print(exc, file=sys.stderr)
        return exc.returncode
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
