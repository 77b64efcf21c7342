"""
Main entry point for the device MQTT session.

This module is responsible for:
- Loading configuration from a YAML file and setting up logging.
- Wiring the DeviceIdentity, CredentialProvider, PahoTransport and
  ConnectionController together.
- Driving the controller: calling `tick()` at a fixed cadence and draining
  the inbound message queue after every tick.
- Publishing an optional telemetry heartbeat.
- Managing the overall application lifecycle (start, graceful stop).
"""

import asyncio
import logging
import queue
import signal
import sys
import time

from typing import Any, Callable, Dict, Optional

from iot_core_mqtt.client.connection import PahoTransport
from iot_core_mqtt.client.credentials import FileCredentialProvider
from iot_core_mqtt.client.identity import DeviceIdentity
from iot_core_mqtt.session.config_loader import load_config
from iot_core_mqtt.session.controller import ConnectionController
from iot_core_mqtt.session.models import BackoffState, InboundMessage, SessionSettings, TelemetryPayload

MessageHandler = Callable[[InboundMessage], None]


def setup_logging(level: str = "INFO"):
    """
    Configures the global logging settings for the entire application.
    This should be called as early as possible during startup.
    """
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s [%(levelname)-8s] %(name)s.%(funcName)s: %(message)s'
    )

logger = logging.getLogger(__name__)


def log_inbound_message(message: InboundMessage):
    """Default handler: config and command payloads are only logged."""
    logger.info(f"Received message on '{message.topic}' (QoS {message.qos}): {message.payload!r}")


def build_controller(config: Dict[str, Any], inbound: queue.Queue) -> ConnectionController:
    """Creates a ConnectionController and its collaborators from the config dict."""
    mqtt_conf = config.get('mqtt', {})
    cred_conf = config.get('credentials', {})

    identity = DeviceIdentity.from_config(config)
    credentials = FileCredentialProvider(cred_conf.get('token_file', 'token.jwt'),
                                         lifetime=float(cred_conf.get('lifetime', 3600)))
    transport = PahoTransport(inbound,
                              ca_certs=mqtt_conf.get('ca_certs'),
                              use_tls=bool(mqtt_conf.get('use_tls', True)),
                              keepalive=int(mqtt_conf.get('keepalive', 60)),
                              connect_timeout=float(mqtt_conf.get('connect_timeout', 10.0)))
    settings = SessionSettings(log_connect=bool(mqtt_conf.get('log_connect', True)),
                               use_lts=bool(mqtt_conf.get('use_lts', False)),
                               use_443_port=bool(mqtt_conf.get('use_443_port', False)),
                               clean_session=bool(mqtt_conf.get('clean_session', True)))
    backoff = BackoffState.from_config(config.get('backoff', {}))

    return ConnectionController(transport, credentials, identity, settings=settings, backoff=backoff)


def drain_inbound(inbound: queue.Queue, handler: MessageHandler) -> int:
    """Hands every queued message to `handler`, in arrival order."""
    handled = 0
    while True:
        try:
            message = inbound.get_nowait()
        except queue.Empty:
            return handled
        try:
            handler(message)
        except Exception as e:
            logger.error(f"Error handling message from '{message.topic}': {e}")
        handled += 1


async def session_loop(controller: ConnectionController, inbound: queue.Queue,
                       handler: MessageHandler = log_inbound_message, interval: float = 0.1):
    """
    Background task ticking the controller. Runs until cancelled.

    Ticks run in a worker thread because paho's loop blocks for up to the
    pump or connect timeout.
    """
    logger.info("Session loop started.")
    try:
        while True:
            try:
                await asyncio.to_thread(controller.tick)
                drain_inbound(inbound, handler)
            except Exception as e:
                logger.error(f"Session tick failed: {e}")
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        logger.info("Session loop stopped.")
        raise


async def telemetry_loop(controller: ConnectionController, interval: float):
    """Background task publishing a heartbeat to the events topic."""
    logger.info("Telemetry loop started.")
    start_time = time.time()

    try:
        while True:
            await asyncio.sleep(interval)
            payload = TelemetryPayload(
                device=controller.identity.device_id,
                status=controller.status,
                uptime=time.time() - start_time
            )
            if not await asyncio.to_thread(controller.publish_telemetry, payload.to_bytes()):
                logger.debug("Heartbeat not published, session is not connected.")

    except asyncio.CancelledError:
        logger.info("Telemetry loop stopped.")


async def shutdown(signal_name: str, controller: ConnectionController):
    """Graceful shutdown handler."""
    logger.info(f"Received exit signal {signal_name}...")

    if not controller.publish_state("disconnected"):
        logger.info("Could not publish disconnected state before shutdown.")

    controller.stop()

    # Cancel all running tasks (like the session loop)
    tasks = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
    for task in tasks:
        task.cancel()

    # Cancelling the runner task lets asyncio.run() return normally
    await asyncio.gather(*tasks, return_exceptions=True)


async def main_application_runner(config_path: str = "config.yaml",
                                  handler: Optional[MessageHandler] = None):
    config: Dict[str, Any] = load_config(config_path)
    setup_logging(config.get('logging', {}).get('level', 'INFO'))
    logger.info("Starting device session...")

    loop = asyncio.get_running_loop()

    inbound: queue.Queue = queue.Queue()
    controller = build_controller(config, inbound)

    driver_conf = config.get('driver', {})
    asyncio.create_task(session_loop(controller, inbound,
                                     handler or log_inbound_message,
                                     float(driver_conf.get('tick_interval', 0.1))))

    telemetry_interval = float(driver_conf.get('telemetry_interval', 0) or 0)
    if telemetry_interval > 0:
        asyncio.create_task(telemetry_loop(controller, telemetry_interval))

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(
            sig,
            lambda s=sig: asyncio.create_task(shutdown(s.name, controller))
        )

    logger.info(f"Session for {controller.identity.client_id} running. Press Ctrl+C to exit.")

    try:
        await asyncio.Future()
    except asyncio.CancelledError:
        pass

if __name__ == "__main__":
    try:
        asyncio.run(main_application_runner(sys.argv[1] if len(sys.argv) > 1 else "config.yaml"))
    except KeyboardInterrupt:
        pass
