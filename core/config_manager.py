import json
import sys
import logging
from pathlib import Path
from typing import Dict, Any, Mapping, Optional
import os

logger = logging.getLogger(__name__)

# Переменные окружения, перекрывающие значения из config.json
ENV_OVERRIDES = {
    'BACKEND_URL': ('backend.url', str),
    'BACKEND_API_KEY': ('backend.api_key', str),
    'PREVIEW_GATEWAY_HOST': ('server.host', str),
    'PREVIEW_GATEWAY_PORT': ('server.port', int),
    'GITHUB_TOKEN': ('integrations.github_token', str),
    'SUPABASE_ACCESS_TOKEN': ('integrations.supabase_access_token', str),
    'SUPABASE_URL': ('integrations.supabase_url', str),
    'SUPABASE_SERVICE_ROLE_KEY': ('integrations.supabase_service_key', str),
    'LOG_LEVEL': ('logging.level', str),
}


def get_app_data_dir():
    """Возвращает путь для хранения данных приложения (config.json, logs/)"""
    custom_dir = os.getenv('PREVIEW_GATEWAY_HOME')
    if custom_dir:
        app_data_dir = Path(custom_dir)
    elif getattr(sys, 'frozen', False):
        if os.name == 'nt':  # Windows
            appdata_dir = Path(os.getenv('LOCALAPPDATA', Path.home() / 'AppData' / 'Local'))
            app_data_dir = appdata_dir / 'PreviewGateway'
        else:  # Linux/Mac
            app_data_dir = Path.home() / '.config' / 'preview-gateway'
    else:
        # Dev режим
        app_data_dir = Path(__file__).parent.parent / 'app_data'

    app_data_dir.mkdir(parents=True, exist_ok=True)
    return app_data_dir


class ConfigManager:
    def __init__(self, config_path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None):
        """
        Args:
            config_path: Путь к config.json (по умолчанию в каталоге данных приложения)
            environ: Источник переменных окружения (по умолчанию os.environ)
        """
        self.config_path = Path(config_path) if config_path else self._get_config_path()
        self.environ = os.environ if environ is None else environ
        self.config = self._load_config()
        self._apply_env_overrides()

    def _get_config_path(self) -> Path:
        """Возвращает путь к файлу конфигурации"""
        return get_app_data_dir() / 'config.json'

    def _get_default_config(self) -> dict:
        """Возвращает конфигурацию по умолчанию"""
        return {
            'server': {
                'host': '127.0.0.1',
                'port': 3100,
            },

            'backend': {
                'url': 'http://localhost:4000',  # Backend с dev-серверами сессий
                'api_key': '',
                'timeout': None,  # None = таймаут aiohttp по умолчанию
            },

            'preview': {
                'max_rewrite_bytes': 5 * 1024 * 1024,  # HTML крупнее отдаётся без перезаписи
            },

            'integrations': {
                'github_token': '',
                'supabase_access_token': '',  # Personal access token для Management API
                'supabase_url': '',  # https://<ref>.supabase.co для истории SQL
                'supabase_service_key': '',
                'user_id': 'local',
            },

            'logging': {
                'level': 'INFO',
                'max_bytes': 5 * 1024 * 1024,
                'backup_count': 5,
            }
        }

    def _load_config(self) -> Dict[str, Any]:
        """Загружает конфигурацию из файла"""
        default_config = self._get_default_config()

        try:
            if self.config_path.exists():
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    loaded_config = json.load(f)
                    # Объединяем с дефолтными значениями
                    return self._deep_merge(default_config, loaded_config)
        except (OSError, ValueError) as e:
            logger.error(f"Ошибка загрузки конфига {self.config_path}: {e}")

        return default_config

    def _apply_env_overrides(self):
        """Значения из окружения имеют приоритет над файлом"""
        for env_name, (key, cast) in ENV_OVERRIDES.items():
            raw_value = self.environ.get(env_name)
            if not raw_value:
                continue
            try:
                self.set(key, cast(raw_value))
            except ValueError:
                logger.warning(f"⚠️ Ignoring invalid {env_name}={raw_value!r}")

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Рекурсивное объединение словарей"""
        result = base.copy()

        for key, value in update.items():
            if (key in result and
                    isinstance(result[key], dict) and
                    isinstance(value, dict)):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def save(self) -> bool:
        """Сохраняет конфигурацию в файл"""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=2, ensure_ascii=False)
            logger.info("Конфигурация сохранена")
            return True
        except OSError as e:
            logger.error(f"Ошибка сохранения конфига: {e}")
            return False

    def get(self, key: str, default: Any = None) -> Any:
        """Получает значение по ключу (dot notation)"""
        value = self.config

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any, save: bool = False) -> bool:
        """Устанавливает значение по ключу (dot notation)"""
        keys = key.split('.')
        config_ref = self.config

        for k in keys[:-1]:
            if k not in config_ref or not isinstance(config_ref[k], dict):
                config_ref[k] = {}
            config_ref = config_ref[k]

        config_ref[keys[-1]] = value

        if save:
            return self.save()
        return True

    def get_backend_config(self) -> Dict[str, Any]:
        """Возвращает настройки backend"""
        return self.get('backend', {})

    def get_integrations_config(self) -> Dict[str, Any]:
        """Возвращает токены и настройки интеграций"""
        return self.get('integrations', {})


# Синглтон для глобального доступа
_config_instance = None


def get_config() -> ConfigManager:
    """Возвращает глобальный экземпляр ConfigManager"""
    global _config_instance
    if _config_instance is None:
        _config_instance = ConfigManager()
    return _config_instance
