"""
テスト用ヘルパー
"""

import io

from PIL import Image

from secure_image.core.key_management import KeyManager

CONTRACT_ADDRESS = "0x5fbdb2315678afecb367f032d93f642f64180aa3"
START_TIME = 1_700_000_000.0


class FakeClock:
    """進められる時計"""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_png(color=(10, 120, 200), size=(8, 8)) -> bytes:
    """テスト用PNG画像を生成"""
    buffer = io.BytesIO()
    Image.new("RGB", size, color=color).save(buffer, format="PNG")
    return buffer.getvalue()


class RecordingKeyManager(KeyManager):
    """生成した鍵を記録する KeyManager（解放された鍵との照合用）"""

    def __init__(self):
        self.keys = []

    def generate_key(self):
        key = super().generate_key()
        self.keys.append(key)
        return key
