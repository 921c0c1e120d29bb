import dataclasses
from io import BytesIO

import librosa
import numpy as np
import soundfile


AUDIO_WRITE_CHUNK_SIZE = 0x10000
# file extension -> soundfile format
AUDIO_FORMATS = {
    "mp3": "MP3",
    "ogg": "OGG",
    "wav": "WAV",
    "flac": "FLAC",
}

class UnsupportedAudioFormatError(RuntimeError):
    def __init__(self, requested_format: str) -> None:
        super().__init__(f"Cannot write audio as {requested_format!r}, supported: {', '.join(AUDIO_FORMATS)}")
        self.requested_format = requested_format

@dataclasses.dataclass
class AudioData:
    samples: "numpy array (c, s)"
    sample_rate: int

    @property
    def duration(self) -> float:
        return librosa.samples_to_time(self.samples.shape[-1], sr=self.sample_rate)

    @staticmethod
    def from_raw(raw_data: bytes) -> "AudioData":
        try:
            data, sr = soundfile.read(BytesIO(raw_data), always_2d=True)
        except soundfile.SoundFileError as sfe:
            raise ValueError(f"Could not parse audio file: {sfe!r}")
        # soundfile uses samples x channels, librosa channels x samples
        return AudioData(samples=data.T, sample_rate=int(sr))

    def with_rate(self, rate: float, pitch_shift: bool = False) -> "AudioData":
        if not rate > 0:
            raise ValueError("Rate must be greater than 0")
        if rate == 1:
            return self
        if pitch_shift:
            # fewer samples played at the same sample rate: faster and higher pitched
            samples = librosa.resample(self.samples, orig_sr=self.sample_rate, target_sr=round(self.sample_rate / rate))
        else:
            samples = librosa.effects.time_stretch(self.samples, rate=rate)
        return AudioData(samples=samples, sample_rate=self.sample_rate)

    def export(self, out_format: str) -> bytes:
        format_name = AUDIO_FORMATS.get(out_format.lower().lstrip("."))
        if format_name is None:
            raise UnsupportedAudioFormatError(out_format)
        return export_audio(self.samples, samplerate=self.sample_rate, format_name=format_name)

def export_audio(data: "numpy array (c, s)|(s,)", samplerate: int, format_name: str) -> bytes:
    # librosa uses channels x samples instead of samples x channels, so transpose
    data = data.T
    bio = BytesIO()
    # saving as ogg segfauls if the chunks are too big, so chunk the writes
    # based on https://github.com/bastibe/python-soundfile/issues/426#issuecomment-2150934383
    if data.ndim == 1:
        channels = 1
    else:
        channels = data.shape[1]
    with soundfile.SoundFile(bio, 'w', samplerate=samplerate, channels=channels, format=format_name) as f:
        num_chunks = max(1, (len(data) + AUDIO_WRITE_CHUNK_SIZE - 1) // AUDIO_WRITE_CHUNK_SIZE)
        for chunk in np.array_split(data, num_chunks, axis=0):
            f.write(chunk)

    return bio.getvalue()

def change_rate(raw_data: bytes, rate: float, *, pitch_shift: bool = False, out_format: str = "mp3") -> bytes:
    """
    Speed up (rate > 1) or slow down audio.
    By default the pitch is kept (time stretch), with pitch_shift it changes like a sped up record.
    """
    return AudioData.from_raw(raw_data).with_rate(rate, pitch_shift=pitch_shift).export(out_format)
