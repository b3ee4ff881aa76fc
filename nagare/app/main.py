from __future__ import annotations

import sys
import traceback

from nagare.app.config import resolve_args
from nagare.app.diagnostics import hint_for_exception, summarize_exception
from nagare.app.logging_setup import setup_app_logger
from nagare.app.runtime import run_captions, run_live
from nagare.audio.errors import AudioError
from nagare.audio.mic import SoundDeviceSource

EXIT_DEVICE_ERROR = 2


def main(argv: list[str] | None = None) -> int:
    args = resolve_args(argv)
    logger, log_path = setup_app_logger(debug=bool(args.debug))
    logger.info("app_start", extra={"config_path": str(getattr(args, "config", "") or ""), "argv": argv or []})

    try:
        if args.list_devices:
            print(SoundDeviceSource.list_devices())
            return 0
        if args.captions_file:
            return run_captions(args, logger)
        return run_live(args, logger)
    except AudioError as e:
        summary = summarize_exception(traceback.format_exc())
        logger.error("audio_failure", extra={"error": str(e), "summary": summary})
        print(f"Audio error: {summary}", file=sys.stderr)
        print(f"Hint: {hint_for_exception(summary)}", file=sys.stderr)
        print(f"Logs: {log_path}", file=sys.stderr)
        return EXIT_DEVICE_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
