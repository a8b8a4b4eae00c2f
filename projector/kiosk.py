#!/usr/bin/env python3
# Full-screen table projection: camera + detector + force field in one window.

from __future__ import annotations

import argparse
import asyncio
import logging

import cv2

from projector.app.config import Settings, get_settings
from projector.app.engine import ProjectorEngine
from projector.app.logging_config import configure_logging

log = logging.getLogger("projector.kiosk")

WINDOW = "Edge Projector (press q/ESC to quit)"


async def run(settings: Settings, fullscreen: bool) -> None:
    engine = ProjectorEngine(settings=settings)
    await engine.start()

    cv2.namedWindow(WINDOW, cv2.WINDOW_NORMAL)
    if fullscreen:
        cv2.setWindowProperty(WINDOW, cv2.WND_PROP_FULLSCREEN, cv2.WINDOW_FULLSCREEN)

    try:
        async for canvas in engine.frames():
            cv2.imshow(WINDOW, canvas)
            key = cv2.waitKey(1) & 0xFF
            if key in (27, ord('q')):
                log.info("Quit requested")
                return
    finally:
        await engine.stop()
        try:
            cv2.destroyAllWindows()
        except cv2.error:
            pass


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    if args.detector:
        settings.detector.backend = args.detector
    if args.style:
        settings.field.style = args.style
    if args.camera is not None:
        settings.camera.device_index = args.camera
    if args.fps:
        settings.render.target_frame_interval_ms = max(1, int(1000 / args.fps))
    if args.width:
        settings.render.width = args.width
    if args.height:
        settings.render.height = args.height
    return settings


def parse() -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Smart table force-field projector")
    ap.add_argument("--detector", choices=["yolo", "hands", "local", "remote", "none"], help="Detector backend")
    ap.add_argument("--style", choices=["grid", "particles", "both"], help="Field rendering style")
    ap.add_argument("--camera", type=int, help="OpenCV camera index")
    ap.add_argument("--fps", type=float, help="Target render rate (e.g. 15 on a Raspberry Pi)")
    ap.add_argument("--width", type=int, help="Canvas width")
    ap.add_argument("--height", type=int, help="Canvas height")
    ap.add_argument("--windowed", action="store_true", help="Do not go full screen")
    ap.add_argument("--log", default=None, choices=["debug", "info", "warning", "error"])
    return ap.parse_args()


def main() -> None:
    args = parse()
    settings = apply_overrides(get_settings(), args)
    level = args.log or settings.log_level
    configure_logging(level, settings.log_directory, settings.log_retention_days)
    try:
        asyncio.run(run(settings, fullscreen=not args.windowed))
    except KeyboardInterrupt:
        log.info("Interrupted")


if __name__ == "__main__":
    main()
