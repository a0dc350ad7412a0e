from pathlib import Path

LOG_DIR = Path(__file__).parent / "logs"
LOG_FILE = LOG_DIR / "session.jsonl"
APP_NAME = "DTB voltage tool"

# Имя свойства по умолчанию (binding simple-battery)
DEFAULT_PROPERTY = "voltage-max-design-microvolt"

# Пределы в микровольтах
MIN_SAFE_MICROVOLT = 3_400_000
ABS_MAX_MICROVOLT = 4_400_000

# Живые значения из sysfs
POWER_SUPPLY_DIR = Path("/sys/class/power_supply")
DEFAULT_VOLTAGE_SENSOR = POWER_SUPPLY_DIR / "battery" / "voltage_now"
DEFAULT_CHARGER_ATTR = POWER_SUPPLY_DIR / "usb" / "online"
CHARGER_ON = "1"
CHARGER_OFF = "0"

# Переподключение зарядки после загрузки
SETTLE_DELAY_MS = 1000
BOOT_DELAY_S = 30
DEFAULT_SCHEDULE_SCRIPT = Path("/etc/local.d/charger-reconcile.start")
