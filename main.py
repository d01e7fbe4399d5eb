# main.py
import sys
import asyncio
import logging


def setup_logging():
    """Настраивает логирование ДО всех операций с ротацией"""
    from core.config_manager import get_app_data_dir, get_config
    from logging.handlers import RotatingFileHandler

    config = get_config()

    logs_dir = get_app_data_dir() / "logs"
    logs_dir.mkdir(exist_ok=True)

    log_file = logs_dir / "preview_gateway.log"

    # Ротирующий обработчик: по умолчанию 5MB, 5 резервных копий
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=config.get('logging.max_bytes', 5 * 1024 * 1024),
        backupCount=config.get('logging.backup_count', 5),
        encoding='utf-8'
    )
    file_handler.setFormatter(
        logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(
        logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    )

    logging.basicConfig(
        level=str(config.get('logging.level', 'INFO')).upper(),
        handlers=[console_handler, file_handler]
    )


logger = logging.getLogger(__name__)


def main():
    """Основная функция приложения"""
    setup_logging()

    from core.server_manager import get_server_manager

    manager = get_server_manager()
    logger.info("🚀 Starting preview gateway")

    try:
        started = asyncio.run(manager.serve_forever())
    except KeyboardInterrupt:
        logger.info("🛑 Interrupted, shutting down")
        return 0

    if not started:
        logger.error(f"❌ Startup failed: {manager.last_error_details}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
