"""
Application configuration.

Loads manager settings from environment variables and account settings
from a JSON file, with defaults merged into every account.
"""

import os
from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Optional

import orjson

from .errors import ConfigurationError
from .policies import RetryPolicy

# (environment variable, default account option, parser)
_DEFAULT_ACCOUNT_VARS = (
    ("DEFAULT_CANCEL_TIME_S", "cancel_time_s", float),
    ("DEFAULT_INVENTORY_REFRESH_S", "inventory_refresh_interval_s", float),
    ("DEFAULT_POLL_INTERVAL_S", "poll_interval_s", float),
    ("DEFAULT_CONFIRMATION_CHECK_S", "confirmation_check_interval_s", float),
    ("DEFAULT_PROXY", "proxy", str),
    ("DEFAULT_TRACKED", "tracked", orjson.loads),
)


def _read_env_file(path: str) -> dict[str, str]:
    """KEY=value pairs of a .env file; comments and `export` prefixes are skipped."""
    values = {}
    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            if key.startswith("export "):
                key = key[len("export "):].strip()
            values[key] = value.strip().strip("'\"")
    return values


@dataclass
class AccountConfig:
    """Settings of one tracked account."""

    account_id: str = ""

    # Login
    username: str = ""
    password: str = ""
    shared_secret: str = ""
    identity_secret: str = ""

    # Seconds before an unresolved offer is force-cancelled
    cancel_time_s: float = 300.0

    # {collection_id: [sub_collection_id, ...]}
    tracked: dict[str, list[str]] = field(default_factory=dict)

    # Periodic full inventory refresh (None disables it)
    inventory_refresh_interval_s: Optional[float] = None

    # Collaborator polling
    confirmation_check_interval_s: float = 10.0
    poll_interval_s: float = 5.0

    proxy: Optional[str] = None

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        defaults: Optional[dict[str, Any]] = None,
    ) -> "AccountConfig":
        """
        Build an account config, filling unset options from `defaults`.

        Unknown keys are rejected.
        """
        known = {f.name for f in fields(cls)}
        merged = dict(defaults or {})
        merged.update({k: v for k, v in data.items() if v is not None})

        unknown = set(merged) - known
        if unknown:
            raise ConfigurationError(f"Unknown account options: {sorted(unknown)}")

        if "account_id" in merged:
            merged["account_id"] = str(merged["account_id"])
        if "tracked" in merged:
            merged["tracked"] = {
                str(collection): [str(sub) for sub in subs]
                for collection, subs in merged["tracked"].items()
            }
        return cls(**merged)

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []
        prefix = f"{self.account_id or '<unnamed>'}:"

        if not self.account_id:
            errors.append(f"{prefix} account_id is required")

        if not self.username or not self.password:
            errors.append(f"{prefix} username and password are required")

        if not self.shared_secret:
            errors.append(f"{prefix} shared_secret is required")

        if not self.identity_secret:
            errors.append(f"{prefix} identity_secret is required")

        if self.cancel_time_s <= 0:
            errors.append(f"{prefix} cancel_time_s must be positive")

        if not self.tracked:
            errors.append(f"{prefix} at least one tracked inventory is required")

        if self.inventory_refresh_interval_s is not None and self.inventory_refresh_interval_s <= 0:
            errors.append(f"{prefix} inventory_refresh_interval_s must be positive")

        return errors


@dataclass
class ManagerConfig:
    """Manager configuration."""

    # Applied to every account that leaves the option unset
    default_account: dict[str, Any] = field(default_factory=dict)

    accounts: list[dict[str, Any]] = field(default_factory=list)

    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ManagerConfig":
        """
        Load config from environment variables.

        DEFAULT_* variables become options of the default account,
        ACCOUNTS_FILE names the JSON list of accounts.
        """
        env = os.environ if env is None else env
        default_account: dict[str, Any] = {}

        for var, option, convert in _DEFAULT_ACCOUNT_VARS:
            if env.get(var):
                default_account[option] = convert(env[var])

        policy = RetryPolicy(
            max_retries=int(env.get("MAX_RETRIES", "5")),
            deadline_grace_s=float(env.get("DEADLINE_GRACE_S", "5")),
            confirmation_max_failures=int(env.get("CONFIRMATION_MAX_FAILURES", "5")),
        )

        config = cls(
            default_account=default_account,
            retry_policy=policy,
            log_level=env.get("LOG_LEVEL", "INFO"),
        )

        accounts_file = env.get("ACCOUNTS_FILE")
        if accounts_file:
            config.accounts = cls._read_accounts(accounts_file)
        return config

    @classmethod
    def from_env_file(cls, path: str) -> "ManagerConfig":
        """
        Load config from a .env file overlaid with the environment.

        Environment variables override file values; the process
        environment itself is left untouched.
        """
        env = _read_env_file(path) if os.path.exists(path) else {}
        env.update(os.environ)
        return cls.from_env(env)

    @classmethod
    def from_json_file(cls, path: str) -> "ManagerConfig":
        """
        Load config from a JSON document.

        Layout: {"default_account": {...}, "accounts": [{...}], "log_level": "INFO"}
        """
        with open(path, "rb") as f:
            data = orjson.loads(f.read())

        return cls(
            default_account=data.get("default_account", {}),
            accounts=data.get("accounts", []),
            log_level=data.get("log_level", "INFO"),
        )

    @staticmethod
    def _read_accounts(path: str) -> list[dict[str, Any]]:
        with open(path, "rb") as f:
            data = orjson.loads(f.read())
        if isinstance(data, dict):
            data = data.get("accounts", [])
        return list(data)

    def account_configs(self) -> list[AccountConfig]:
        """Account configs with defaults applied."""
        return [
            AccountConfig.from_dict(account, self.default_account)
            for account in self.accounts
        ]

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = list(self.retry_policy.validate())

        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append("LOG_LEVEL must be a standard logging level")

        seen = set()
        try:
            accounts = self.account_configs()
        except ConfigurationError as e:
            errors.append(str(e))
            return errors

        for account in accounts:
            errors.extend(account.validate())
            if account.account_id in seen:
                errors.append(f"Duplicate account {account.account_id}")
            seen.add(account.account_id)

        return errors
