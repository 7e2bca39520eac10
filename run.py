import asyncio
import os
import signal
from pathlib import Path
from typing import Optional

import typer

from hl7_gateway.commons.logger import setup_logging
from hl7_gateway.commons.settings import load_settings
from hl7_gateway.helpers.tcp_transport import TcpSender
from hl7_gateway.services.gateway_service import GatewayService

app = typer.Typer(add_completion=False, help="HL7 v2 / MLLP gateway")


@app.command()
def serve(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="settings.yaml a usar"),
    host: Optional[str] = typer.Option(None, help="IP local para escuchar (override)"),
    port: Optional[int] = typer.Option(None, help="Puerto MLLP (override)"),
):
    """Listen for ORM^O01 / ORU^R01 over MLLP until SIGINT/SIGTERM."""
    settings = load_settings(str(config) if config else None)
    if host:
        settings.server.host = host
    if port is not None:
        settings.server.port = port

    logger = setup_logging(settings.paths.logs_root, os.getenv("LOG_LEVEL", settings.logging.level))
    logger.log("INFO", f"Iniciando HL7 gateway en {settings.server.host}:{settings.server.port}")
    svc = GatewayService(settings)

    async def _amain():
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Windows: Ctrl+C still raises KeyboardInterrupt
                pass
        await svc.run_tcp_mode(stop_event)

    try:
        asyncio.run(_amain())
    except KeyboardInterrupt:
        logger.info("Interrupted")


@app.command()
def send(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Archivo HL7 a enviar"),
    host: str = typer.Option("127.0.0.1", help="Host destino"),
    port: int = typer.Option(2575, help="Puerto MLLP destino"),
    timeout: float = typer.Option(5.0, help="Segundos a esperar el ACK"),
):
    """Send one HL7 file wrapped in MLLP and print the ACK."""
    text = file.read_text(encoding="utf-8")
    # Los archivos editados a mano traen LF; HL7 separa segmentos con CR
    hl7 = "\r".join(line for line in text.splitlines() if line.strip())
    try:
        ack = asyncio.run(TcpSender(host, port, timeout).send(hl7))
    except (OSError, asyncio.TimeoutError) as ex:
        typer.echo(f"No se pudo conectar a {host}:{port}: {ex}", err=True)
        raise typer.Exit(code=2)
    if ack is None:
        typer.echo("Sin ACK (timeout o mensaje descartado)")
        raise typer.Exit(code=1)
    typer.echo(ack.replace("\r", "\n"))


if __name__ == "__main__":
    app()
