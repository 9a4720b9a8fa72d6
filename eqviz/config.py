"""Configuration audio et sélection des périphériques.

Fournit les constantes du pipeline d'analyse, un petit objet `Config` pour
transporter les options courantes, les contraintes passées à la capture et
des helpers pour lister les périphériques PortAudio.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

_sd_import_err = None
try:
    import sounddevice as sd
except Exception as e:
    sd = None
    _sd_import_err = e

logger = logging.getLogger("eqviz.config")

AUDIO_CONSTANTS = {
    "SAMPLE_RATE": 44100,
    "FFT_SIZE": 2048,
    "SMOOTHING": 0.8,
    "MIN_DB": -90.0,
    "MAX_DB": -10.0,
    "LIVE_SMOOTHING": 0.6,
    "NUM_BARS": 72,
    # ordered low -> high, Hz
    "FREQUENCY_BANDS": {
        "subbass": (20, 60),
        "bass": (60, 250),
        "lowmid": (250, 500),
        "mid": (500, 2000),
        "highmid": (2000, 4000),
        "presence": (4000, 6000),
        "brilliance": (6000, 20000),
    },
}


@dataclass(frozen=True)
class CaptureConstraints:
    """What the session asks of the capture source when acquiring."""
    device: Optional[Union[int, str]] = None
    sample_rate: int = AUDIO_CONSTANTS["SAMPLE_RATE"]
    fft_size: int = AUDIO_CONSTANTS["FFT_SIZE"]
    smoothing: float = AUDIO_CONSTANTS["SMOOTHING"]
    min_db: float = AUDIO_CONSTANTS["MIN_DB"]
    max_db: float = AUDIO_CONSTANTS["MAX_DB"]
    channels: int = 1

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2


class Config:
    def __init__(self, device: Optional[int] = None, fft_size: int = AUDIO_CONSTANTS["FFT_SIZE"],
                 sample_rate: Optional[int] = None,
                 smoothing: float = AUDIO_CONSTANTS["SMOOTHING"],
                 min_db: float = AUDIO_CONSTANTS["MIN_DB"],
                 max_db: float = AUDIO_CONSTANTS["MAX_DB"],
                 live_smoothing: float = AUDIO_CONSTANTS["LIVE_SMOOTHING"],
                 num_bars: int = AUDIO_CONSTANTS["NUM_BARS"],
                 log_scaling: bool = True,
                 fps: int = 60,
                 width: int = 600, height: int = 600):
        if fft_size < 2 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two, got {fft_size}")
        if num_bars < 1:
            raise ValueError("num_bars must be at least 1")
        self.device = device
        self.fft_size = fft_size
        self.sample_rate = sample_rate or AUDIO_CONSTANTS["SAMPLE_RATE"]
        self.smoothing = smoothing
        self.min_db = min_db
        self.max_db = max_db
        self.live_smoothing = live_smoothing
        self.num_bars = num_bars
        self.log_scaling = log_scaling
        self.fps = fps
        self.width = width
        self.height = height

    def constraints(self) -> CaptureConstraints:
        return CaptureConstraints(
            device=self.device,
            sample_rate=self.sample_rate,
            fft_size=self.fft_size,
            smoothing=self.smoothing,
            min_db=self.min_db,
            max_db=self.max_db,
        )


def list_devices(inputs_only: bool = True) -> List[Dict]:
    """Retourne la liste des périphériques audio.

    Par défaut (inputs_only=True) on ne garde que les périphériques qui
    fournissent des canaux d'entrée (max_input_channels > 0), ceux qu'on peut
    ouvrir comme micro. Passez inputs_only=False pour la liste complète.
    """
    if sd is None:
        raise RuntimeError(f"sounddevice non disponible: {_sd_import_err}")
    out = []
    for i, d in enumerate(sd.query_devices()):
        d = dict(d)
        # keep the original PortAudio index so callers can map back
        d['_pa_index'] = i
        if inputs_only and d.get('max_input_channels', 0) <= 0:
            continue
        out.append(d)
    return out


def format_devices(inputs_only: bool = True) -> List[str]:
    """Helper: liste des noms + indices formatés pour affichage."""
    lines = []
    for i, d in enumerate(list_devices(inputs_only=inputs_only)):
        pa_idx = d.get('_pa_index', i)
        lines.append(f"{pa_idx}: {d['name']}  in={d['max_input_channels']} out={d['max_output_channels']}")
    return lines


def device_info() -> Dict:
    """Summary of the available inputs. Never raises."""
    try:
        devices = list_devices(inputs_only=True)
        default_index = None
        if sd is not None:
            default_index = sd.default.device[0]
        default = next((d for d in devices if d['_pa_index'] == default_index), None)
        return {
            'available': len(devices) > 0,
            'devices': devices,
            'default_device': default,
            'count': len(devices),
        }
    except Exception as e:
        logger.error("Error getting audio devices: %s", e)
        return {
            'available': False,
            'devices': [],
            'default_device': None,
            'count': 0,
            'error': str(e),
        }


def check_compatibility() -> Dict[str, bool]:
    compat = {}
    try:
        import numpy  # noqa: F401
        compat['numpy'] = True
    except ImportError:
        compat['numpy'] = False
    compat['sounddevice'] = sd is not None
    try:
        import pygame  # noqa: F401
        compat['pygame'] = True
    except ImportError:
        compat['pygame'] = False
    compat['all_supported'] = all(compat.values())
    return compat


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
