#!/usr/bin/env python3
"""
Fingertip Pulse – main entry point.

Usage
-----
    python main.py [OPTIONS]

Options
-------
    --duration FLOAT     Measurement length in seconds (default: 15)
    --resolution WxH     Requested camera resolution (default: 1280x720)
    --fps INT            Target frame rate (default: 30)
    --camera-index INT   Camera device index (default: 0)
    --flip               Mirror the preview horizontally
    --headless           Run without display window (log progress only)
    --orthostatic        Resting + standing measurement with recommendation
    --history PATH       JSON file the orthostatic results are appended to

Keyboard shortcuts (when a window is open)
------------------------------------------
    q / ESC  – stop the measurement
    any key  – dismiss the result screen
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Must be set before cv2 is imported so Qt5 uses X11/XWayland instead of
# looking for a Wayland plugin that is not bundled with pip-installed opencv.
import os
os.environ.setdefault("QT_QPA_PLATFORM", "xcb")

import cv2

from fingertip_pulse.config import CameraConstraints, DetectionConfig
from fingertip_pulse.orthostatic import Measurement, MeasurementHistory
from fingertip_pulse.session import PulseDetector, SessionStatus
from fingertip_pulse.visualizer import Visualizer

logger = logging.getLogger("fingertip_pulse")

WINDOW = "Fingertip Pulse"
# How long the result stays up unless a key is pressed.
RESULT_HOLD_SECONDS = 10.0


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Heart-rate measurement from a fingertip on the camera (PPG)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--duration", type=float, default=15.0,
                        help="Measurement length in seconds")
    parser.add_argument("--resolution", default="1280x720",
                        help="Requested camera resolution, e.g. 1280x720")
    parser.add_argument("--fps", type=int, default=30,
                        help="Target capture frame rate")
    parser.add_argument("--camera-index", type=int, default=0,
                        help="Camera device index")
    parser.add_argument("--flip", action="store_true",
                        help="Mirror the preview horizontally")
    parser.add_argument("--headless", action="store_true",
                        help="No display window; log progress to stdout only")
    parser.add_argument("--orthostatic", action="store_true",
                        help="Measure resting, then standing heart rate")
    parser.add_argument("--history", type=Path, default=None,
                        help="JSON file orthostatic results are appended to")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Debug logging")
    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Measurement loop
# ---------------------------------------------------------------------------

async def measure(detector: PulseDetector, vis: Visualizer, headless: bool) -> int | None:
    """Run one session to completion; return the final BPM or None."""
    await detector.start_detection()

    last_second = -1
    last_frame = None
    quit_requested = False
    while detector.status is SessionStatus.DETECTING:
        frame = detector.video.current_frame()
        if not headless and frame is not None:
            last_frame = frame
            annotated = vis.draw(
                frame.copy(),
                current_bpm=detector.current_bpm,
                progress=detector.progress,
                is_detecting=detector.is_detecting,
                signal=detector.buffer.normalized(),
            )
            cv2.imshow(WINDOW, annotated)
            key = cv2.waitKey(1) & 0xFF
            if key in (ord("q"), 27):          # q or ESC
                logger.info("Stop requested by user.")
                detector.stop_detection()
                quit_requested = True
                break

        second = int(detector.progress * detector.config.duration_seconds / 100)
        if headless and second != last_second:
            last_second = second
            bpm = detector.current_bpm
            print(f"[{detector.progress:5.1f}%] "
                  + (f"BPM={bpm}" if bpm else "Waiting for signal…")
                  + f"  samples={len(detector.buffer)}")

        await asyncio.sleep(1.0 / detector.config.frame_rate)

    if not headless and not quit_requested and last_frame is not None:
        await show_result(detector, vis, last_frame)

    if detector.final_bpm is not None:
        print(f"Heart rate: {detector.final_bpm} BPM")
    elif detector.error:
        print(f"Error: {detector.error}")
    return detector.final_bpm


async def show_result(detector: PulseDetector, vis: Visualizer, frame) -> None:
    """Hold the final reading (or the error) on screen until a key or timeout."""
    annotated = vis.draw(
        frame.copy(),
        current_bpm=detector.current_bpm,
        progress=detector.progress,
        is_detecting=False,
        final_bpm=detector.final_bpm,
        error=detector.error,
        signal=detector.buffer.normalized(),
    )
    cv2.imshow(WINDOW, annotated)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + RESULT_HOLD_SECONDS
    while loop.time() < deadline:
        if cv2.waitKey(1) & 0xFF != 0xFF:
            break
        await asyncio.sleep(0.05)


async def run(args: argparse.Namespace) -> int:
    try:
        res_w, res_h = (int(v) for v in args.resolution.lower().split("x"))
    except ValueError:
        logger.error("Invalid --resolution format.  Use WxH, e.g. 1280x720.")
        return 1

    constraints = CameraConstraints(
        ideal_width=res_w,
        ideal_height=res_h,
        fps=args.fps,
        camera_index=args.camera_index,
        flip_horizontal=args.flip,
    )
    try:
        config = DetectionConfig(
            duration_seconds=args.duration, frame_rate=float(args.fps)
        ).validate()
    except ValueError as exc:
        logger.error("Invalid settings: %s", exc)
        return 1

    vis = Visualizer(roi_fraction=config.roi_fraction)
    if not args.headless:
        cv2.namedWindow(WINDOW, cv2.WINDOW_NORMAL)

    try:
        async with PulseDetector(config=config, constraints=constraints) as detector:
            if not args.orthostatic:
                return 0 if await measure(detector, vis, args.headless) else 1

            print("Sit or lie still, finger on the camera.")
            resting = await measure(detector, vis, args.headless)
            if resting is None:
                return 1
            await asyncio.to_thread(input, "Now stand up, then press Enter… ")
            standing = await measure(detector, vis, args.headless)
            if standing is None:
                return 1

            result = Measurement.from_rates(resting, standing)
            print(f"Resting {result.resting_hr} → standing {result.standing_hr} "
                  f"(+{result.difference}): {result.recommendation}")

            if args.history is not None:
                history = MeasurementHistory.load(args.history)
                history.add(result)
                history.save(args.history)
                print(f"Average rise over {len(history)} tests: "
                      f"+{history.average_difference()} BPM")
            return 0
    finally:
        if not args.headless:
            cv2.destroyAllWindows()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def cli(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(cli())
