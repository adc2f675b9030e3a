"""
Adapters Layer
ポートインターフェースの具体的な実装

注: ネットワーク依存のアダプターは直接インポートを推奨
使用例:
    from secure_image.adapters.blob.ipfs import IPFSBlobStore
    from secure_image.adapters.ledger.rpc import JsonRpcLedger
"""

# 遅延インポート用のサブモジュール名のみエクスポート
__all__ = [
    "blob",
    "compute",
    "ledger",
]
