# main.py
import argparse
import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = 'INFO', log_file: Optional[Path] = None):
    """Настраивает логирование ДО всех операций с ротацией"""
    handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handlers.append(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)

        # Ротирующий обработчик: макс 5MB, 5 резервных копий
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=handlers,
        force=True,
    )


def setup_exception_handler():
    """Настраивает глобальный обработчик исключений"""

    def exception_handler(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return

        logger.critical("Необработанное исключение:",
                        exc_info=(exc_type, exc_value, exc_traceback))

    sys.excepthook = exception_handler


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog='webanalytics-proxy',
        description='Relay web analytics script and collect requests through your own origin',
    )
    parser.add_argument('--config', type=Path, help='Path to JSON config file')
    parser.add_argument('--host', help='Listen address (overrides server.host)')
    parser.add_argument('--port', type=int, help='Listen port (overrides server.port)')
    parser.add_argument('--provider', help='Analytics provider preset, e.g. cloudflare')
    parser.add_argument('--log-level', help='Logging level (overrides logging.level)')
    parser.add_argument('--log-file', type=Path, help='Log file (overrides logging.file)')
    parser.add_argument('--no-log-file', action='store_true', help='Log to console only')
    parser.add_argument('--init-config', action='store_true',
                        help='Write the effective config to --config path and exit')
    return parser.parse_args(argv)


async def serve(manager):
    """Запускает сервер и ждет остановки"""
    await manager.start()
    try:
        await asyncio.Event().wait()
    finally:
        await manager.stop()


def main(argv=None) -> int:
    """Основная функция приложения"""
    from webanalytics_proxy.core.config_manager import ConfigManager, get_app_data_dir
    from webanalytics_proxy.core.options import ConfigurationError
    from webanalytics_proxy.core.proxy_manager import ProxyManager, create_proxy
    from webanalytics_proxy.utils.port_utils import check_port_availability

    args = parse_args(argv)

    try:
        config = ConfigManager(args.config)
    except ConfigurationError as e:
        setup_logging()
        logger.error(f"❌ {e}")
        return 2

    if args.provider:
        config.set('proxy.Provider', args.provider)
    if args.host:
        config.set('server.host', args.host)
    if args.port:
        config.set('server.port', args.port)
    if args.log_level:
        config.set('logging.level', args.log_level)
    if args.log_file:
        config.set('logging.file', str(args.log_file))

    log_file = None
    if not args.no_log_file:
        configured = config.get('logging.file')
        log_file = Path(configured) if configured else get_app_data_dir() / 'logs' / 'webanalytics_proxy.log'

    # НАСТРАИВАЕМ ЛОГИРОВАНИЕ САМЫМ ПЕРВЫМ ДЕЛОМ
    setup_logging(config.get('logging.level', 'INFO'), log_file)
    setup_exception_handler()

    if args.init_config:
        return 0 if config.save() else 1

    try:
        options = config.get_proxy_options()
    except ConfigurationError as e:
        logger.error(f"❌ Invalid proxy configuration: {e}")
        return 2

    server_config = config.get_server_config()
    host = server_config['host']
    port = int(server_config['port'])

    port_available, port_message = check_port_availability(port, host)
    if not port_available:
        logger.error(f"❌ {port_message}")
        return 1

    manager = ProxyManager(
        create_proxy(options),
        host=host,
        port=port,
        script_path=server_config['script_path'],
        collect_path=server_config['collect_path'],
    )

    logger.info("🚀 Запуск WebAnalytics Proxy")
    try:
        asyncio.run(serve(manager))
    except KeyboardInterrupt:
        logger.info("Остановлено пользователем")

    return 0


if __name__ == '__main__':
    sys.exit(main())
