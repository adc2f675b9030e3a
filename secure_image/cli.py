#!/usr/bin/env python3
"""
Secure Image CLI - 機密画像の保管とアクセス制御の操作ツール
Typer + Rich を使用
"""

import asyncio
import io
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from secure_image.core.config import get_settings
from secure_image.core.dependencies import DependencyContainer, get_container
from secure_image.core.exceptions import AuthorizationError, SecureImageError
from secure_image.core.identity import RequesterIdentity, load_or_create_identity
from secure_image.core.key_management import KeyManager
from secure_image.core.logging import SecureImageLogger

app = typer.Typer(
    name="secure-image",
    help="Secure Image - 機密画像の暗号化保管・鍵エスクロー・アクセス制御 CLI",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()


@app.callback()
def main():
    """ログ設定を適用"""
    SecureImageLogger.configure(get_settings().log_level)


def _run(coro):
    """非同期処理を実行し、ドメイン例外をエラー表示に変換"""
    try:
        return asyncio.run(coro)
    except SecureImageError as e:
        console.print(f"[red]エラー ({e.error_code}): {e.message}[/red]")
        raise typer.Exit(1)


def _identity(path: Optional[Path]) -> RequesterIdentity:
    try:
        return load_or_create_identity(path or get_settings().identity_file)
    except SecureImageError as e:
        console.print(f"[red]エラー: {e.message}[/red]")
        console.print("💡 'secure-image new-identity' でアイデンティティを作成してください")
        raise typer.Exit(1)


@app.command("generate-key")
def generate_key():
    """
    160ビットの画像鍵を1つ生成して表示します
    """
    key = KeyManager().generate_key()
    console.print(key.hex)


@app.command("new-identity")
def new_identity(
    path: Optional[Path] = typer.Option(None, help="鍵ファイルのパス"),
    force: bool = typer.Option(False, help="既存の鍵ファイルを上書き"),
):
    """
    署名用アイデンティティを生成して保存します
    """
    key_path = path or Path(get_settings().identity_file)
    if key_path.exists() and not force:
        console.print(f"[red]エラー: {key_path} は既に存在します（--force で上書き）[/red]")
        raise typer.Exit(1)

    identity = RequesterIdentity.generate()
    identity.save(key_path)
    console.print(Panel(
        f"[bold]アドレス:[/bold] {identity.address}\n"
        f"[bold]鍵ファイル:[/bold] {key_path}",
        title="アイデンティティ作成",
    ))


@app.command("get-image-info")
def get_image_info(image_id: int = typer.Option(..., "--id", help="画像ID")):
    """
    画像情報を表示します
    """
    registry = get_container().get_registry()
    info = _run(registry.get_image_info(image_id))
    console.print(Panel(
        f"[bold]オーナー:[/bold] {info.owner}\n"
        f"[bold]ハッシュ:[/bold] {info.content_hash}\n"
        f"[bold]作成日時:[/bold] {info.created_at.isoformat()}",
        title=f"画像 {image_id}",
    ))


@app.command("get-total-images")
def get_total_images():
    """
    登録済み画像の総数を表示します
    """
    total = _run(get_container().get_registry().get_total_images())
    console.print(f"Total images: {total}")


@app.command("get-user-images")
def get_user_images(user: str = typer.Option(..., help="オーナーアドレス")):
    """
    ユーザーが登録した画像ID一覧を表示します
    """
    image_ids = _run(get_container().get_registry().get_user_images(user))
    if not image_ids:
        console.print(f"No images for {user}")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("画像ID", justify="right", style="cyan")
    for image_id in image_ids:
        table.add_row(str(image_id))
    console.print(table)


@app.command("authorize-user")
def authorize_user(
    image_id: int = typer.Option(..., "--image-id", help="画像ID"),
    user: str = typer.Option(..., help="認可するユーザーアドレス"),
    identity_path: Optional[Path] = typer.Option(None, "--identity", help="オーナーの鍵ファイル"),
):
    """
    画像の復号をユーザーに許可します（オーナーのみ）
    """
    owner = _identity(identity_path)
    _run(get_container().get_registry().authorize_user(image_id, user, caller=owner.address))
    console.print(f"[green]✅ User {user} authorized for image {image_id}[/green]")


@app.command("check-authorization")
def check_authorization(
    image_id: int = typer.Option(..., "--image-id", help="画像ID"),
    user: str = typer.Option(..., help="ユーザーアドレス"),
):
    """
    ユーザーが画像に認可されているか確認します
    """
    authorized = _run(get_container().get_registry().is_authorized(image_id, user))
    status = "authorized" if authorized else "not authorized"
    console.print(f"User {user} is {status} for image {image_id}")


@app.command("upload-image")
def upload_image(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="画像ファイル"),
    identity_path: Optional[Path] = typer.Option(None, "--identity", help="オーナーの鍵ファイル"),
):
    """
    画像を暗号化して Blob Store に保存し、台帳に登録します
    """
    owner = _identity(identity_path)
    service = get_container().get_upload_service()
    result = _run(service.upload(file.read_bytes(), owner.address))
    console.print(Panel(
        f"[bold]画像ID:[/bold] {result.image_id}\n"
        f"[bold]ハッシュ:[/bold] {result.content_hash}\n"
        f"[bold]オーナー:[/bold] {result.owner}",
        title="アップロード完了",
    ))


@app.command("decrypt-image")
def decrypt_image(
    image_id: int = typer.Option(..., "--image-id", help="画像ID"),
    output: Path = typer.Option(..., "--output", "-o", help="出力ファイル"),
    identity_path: Optional[Path] = typer.Option(None, "--identity", help="リクエスタの鍵ファイル"),
):
    """
    認可済みの画像を復号して保存します
    """
    requester = _identity(identity_path)
    orchestrator = get_container().get_orchestrator()
    plaintext = _run(orchestrator.decrypt(image_id, requester))
    output.write_bytes(plaintext)
    console.print(f"[green]✅ Image {image_id} decrypted to {output} ({len(plaintext)} bytes)[/green]")


def _demo_image() -> bytes:
    from PIL import Image

    buffer = io.BytesIO()
    Image.new("RGB", (16, 16), color=(200, 40, 90)).save(buffer, format="PNG")
    return buffer.getvalue()


async def _run_demo(container: DependencyContainer) -> list[tuple[str, str]]:
    owner = RequesterIdentity.generate()
    requester = RequesterIdentity.generate()
    registry = container.get_registry()
    orchestrator = container.get_orchestrator()
    steps: list[tuple[str, str]] = []

    image = _demo_image()
    result = await container.get_upload_service().upload(image, owner.address)
    steps.append(("upload", f"imageId={result.image_id}"))

    try:
        await orchestrator.decrypt(result.image_id, requester)
        steps.append(("decrypt before authorization", "unexpectedly succeeded"))
    except AuthorizationError as e:
        steps.append(("decrypt before authorization", f"denied ({e.error_code})"))

    await registry.authorize_user(result.image_id, requester.address, caller=owner.address)
    steps.append(("authorize", requester.address))

    plaintext = await orchestrator.decrypt(result.image_id, requester)
    steps.append(("decrypt", "matches original" if plaintext == image else "MISMATCH"))
    return steps


@app.command()
def demo():
    """
    インメモリ実装でアップロードから復号までを実行します
    """
    steps = _run(_run_demo(DependencyContainer.in_memory()))

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ステップ", style="cyan")
    table.add_column("結果", style="white")
    for step, outcome in steps:
        table.add_row(step, outcome)
    console.print(table)


if __name__ == "__main__":
    app()
