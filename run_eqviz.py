#!/usr/bin/env python3
"""Runner pour l'égaliseur circulaire."""
import argparse
import logging
import time

from eqviz.analysis import format_frequency
from eqviz.config import AUDIO_CONSTANTS, Config, check_compatibility, format_devices, setup_logging
from eqviz.core import MicrophoneSource
from eqviz.patterns import PATTERN_KINDS
from eqviz.session import SessionController, SessionState

logger = logging.getLogger("eqviz.run")


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Circular equalizer for microphone input.")
    p.add_argument("--device", type=int, default=None, help="Index PortAudio du micro à utiliser (voir --list-devices)")
    p.add_argument("--fft-size", type=int, default=AUDIO_CONSTANTS["FFT_SIZE"], help="Taille de FFT (puissance de deux)")
    p.add_argument("--samplerate", type=int, default=None, help="Forcer la fréquence d'échantillonnage")
    p.add_argument("--bars", type=int, default=AUDIO_CONSTANTS["NUM_BARS"], help="Nombre de barres autour du cercle")
    p.add_argument("--fps", type=int, default=60)
    p.add_argument("--no-log-scaling", action="store_true", help="Répartition linéaire des fréquences")
    p.add_argument("--list-devices", action="store_true", help="Lister les micros (PortAudio) et quitter")
    p.add_argument("--check", action="store_true", help="Vérifier les dépendances et quitter")
    p.add_argument("--demo", choices=PATTERN_KINDS, default=None, help="Afficher un motif de test sans micro")
    p.add_argument("--headless", type=float, default=None, metavar="SECONDS",
                   help="Pas de fenêtre: analyser pendant SECONDS et journaliser les stats")
    p.add_argument("-v", "--verbose", action="store_true")
    return p.parse_args(argv)


def run_headless(controller: SessionController, seconds: float, log_every: float = 0.5) -> int:
    controller.start()
    controller.wait_until_settled()
    if controller.state is SessionState.FAILED:
        logger.error("%s", controller.failure.user_message)
        return 1
    frame = 1.0 / max(1, controller.config.fps)
    deadline = time.monotonic() + seconds
    last_log = 0.0
    while time.monotonic() < deadline:
        snap = controller.tick()
        now = time.monotonic()
        if snap is not None and now - last_log >= log_every:
            last_log = now
            spectral = snap.statistics.spectral
            logger.info("RMS=%.3f centroid=%s flatness=%.3f rolloff=%s",
                        snap.loudness, format_frequency(spectral.centroid),
                        spectral.flatness, format_frequency(spectral.rolloff))
        time.sleep(frame)
    return 0


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.verbose)

    if args.check:
        for name, ok in check_compatibility().items():
            print(f"{name}: {'ok' if ok else 'missing'}")
        return 0
    if args.list_devices:
        try:
            for line in format_devices():
                print(line)
            return 0
        except Exception as e:
            print('Impossible de lister les périphériques audio via PortAudio:', e)
            print('\nSur Linux installez les bibliothèques système puis réessayez:')
            print('  Debian/Ubuntu: sudo apt install libportaudio2 portaudio19-dev')
            print('  Fedora: sudo dnf install portaudio portaudio-devel')
            return 1

    try:
        cfg = Config(device=args.device, fft_size=args.fft_size, sample_rate=args.samplerate,
                     num_bars=args.bars, fps=args.fps, log_scaling=not args.no_log_scaling)
    except ValueError as e:
        print("Configuration invalide:", e)
        return 2

    controller = SessionController(MicrophoneSource(), cfg)
    with controller:
        if args.headless is not None:
            return run_headless(controller, args.headless)

        from eqviz.gui import CircularEqualizerGUI
        gui = CircularEqualizerGUI(controller, title="Circular Equalizer")
        if args.demo:
            controller.generate_test_audio(args.demo)
        else:
            controller.start()
        gui.run()
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
