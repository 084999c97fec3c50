"""Application entrypoint."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence

from audio_levels import level_bar
from config import JsonConfigStore, PipelineConfig
from hotkey import GlobalHotkeyAdapter
from interfaces import HotkeySource
from models import SessionState, TranscriptionMode, TranscriptUpdate
from recognizer import create_engine
from recorder import SimulatedRecorder, SoundDeviceRecorder, list_input_devices
from session_controller import SessionController
from typing_sink import create_typing_sink

logger = logging.getLogger("steady_dictation")


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="steady-dictation",
        description="Type what you say into the focused window, push-to-talk or streaming.",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to config.json")
    parser.add_argument("--mode", choices=[m.value for m in TranscriptionMode], default=None)
    parser.add_argument("--engine", choices=["dashscope", "whisper"], default=None)
    parser.add_argument("--model", default=None, help="Engine model name")
    parser.add_argument("--typing", choices=["keyboard", "clipboard", "none"], default=None)
    parser.add_argument("--hotkey", default=None, help="pynput key name, e.g. Key.alt_l")
    parser.add_argument("--toggle", action="store_true", help="Press once to start, again to stop")
    parser.add_argument("--device", default=None, help="Input device index or name")
    parser.add_argument("--simulate", type=float, metavar="SECONDS", default=None,
                        help="Run one session on synthetic audio instead of the microphone")
    parser.add_argument("--list-devices", action="store_true")
    parser.add_argument("--meter", action="store_true", help="Show the input level while recording")
    parser.add_argument("--set-api-key", metavar="KEY", default=None, help="Store the DashScope API key and exit")
    parser.add_argument("--save-config", action="store_true", help="Write the effective settings to the config file")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def _build_config(args: argparse.Namespace, store: JsonConfigStore) -> PipelineConfig:
    config = store.load()
    if args.mode:
        config.mode = args.mode
    if args.engine:
        config.engine = args.engine
    if args.model:
        config.model = args.model
    if args.typing:
        config.typing = args.typing
    if args.hotkey:
        config.hotkey = args.hotkey
    if args.toggle:
        config.hotkey_toggle = True
    if args.device is not None:
        config.device = args.device
    return config


class App:
    def __init__(self, config: PipelineConfig, api_key: str = "", simulate: bool = False, meter: bool = False) -> None:
        self.config = config
        self.meter = meter
        if simulate:
            recorder = SimulatedRecorder(sample_rate=config.sample_rate, frame_ms=config.frame_ms)
        else:
            device = config.device
            if isinstance(device, str) and device.isdigit():
                device = int(device)
            recorder = SoundDeviceRecorder(sample_rate=config.sample_rate, frame_ms=config.frame_ms, device=device)
        self.controller = SessionController(
            recorder=recorder,
            engine=create_engine(config, api_key=api_key),
            typing_sink=create_typing_sink(config.typing),
            config=config,
            on_state_change=self._on_state_change,
            on_text=self._on_text,
            on_error=self._on_error,
            on_level=self._on_level if meter else None,
        )
        self.hotkey: HotkeySource = GlobalHotkeyAdapter(hotkey_name=config.hotkey, toggle=config.hotkey_toggle)
        self._quit = threading.Event()

    # ------------------------------------------------------------------
    # Callbacks (called from worker threads)
    # ------------------------------------------------------------------

    def _on_state_change(self, from_state: SessionState, to_state: SessionState) -> None:
        logger.info("%s -> %s", from_state.value, to_state.value)

    def _on_text(self, update: TranscriptUpdate) -> None:
        logger.info("%s%s", "[final] " if update.final else "", update.text)

    def _on_error(self, code: str, message: str) -> None:
        logger.error("%s: %s", code, message)

    def _on_level(self, db: float) -> None:
        sys.stderr.write(f"\rLevel: {level_bar(db)} ({db:6.1f} dB)")
        sys.stderr.flush()

    # ------------------------------------------------------------------
    # Hotkey handlers
    # ------------------------------------------------------------------

    def _on_hotkey_press(self) -> None:
        self.controller.start_session()

    def _on_hotkey_release(self) -> None:
        # stop_session waits for the last transcription; keep it off the
        # listener thread so key events keep flowing
        threading.Thread(target=self.controller.stop_session, daemon=True).start()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        if not self.controller.initialize():
            return 1
        try:
            self.hotkey.start(on_press=self._on_hotkey_press, on_release=self._on_hotkey_release)
        except Exception as exc:
            logger.error("Hotkey disabled: %s", exc)
            return 1
        try:
            while not self._quit.wait(0.5):
                pass
        except KeyboardInterrupt:
            pass
        self.quit()
        return 0

    def run_once(self, seconds: float) -> int:
        if not self.controller.start_session():
            return 1
        try:
            self._quit.wait(seconds)
        except KeyboardInterrupt:
            pass
        self.controller.stop_session()
        self.controller.close()
        return 0

    def quit(self) -> None:
        self._quit.set()
        self.hotkey.stop()
        self.controller.cancel_session("app quit")
        self.controller.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.list_devices:
        try:
            devices = list_input_devices()
        except RuntimeError as exc:
            logger.error("%s", exc)
            return 1
        for dev in devices:
            print(f"{dev['index']:3d}  {dev['name']} ({dev['channels']} ch)")
        return 0

    store = JsonConfigStore(path=args.config)
    if args.set_api_key is not None:
        store.set_api_key(args.set_api_key)
        logger.info("API key saved to %s", store.path)
        return 0
    config = _build_config(args, store)
    if args.save_config:
        store.save(config)
        logger.info("settings saved to %s", store.path)
    app = App(config, api_key=store.get_api_key(), simulate=args.simulate is not None, meter=args.meter)
    if args.simulate is not None:
        return app.run_once(args.simulate)
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
