from __future__ import annotations
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional
from dotenv import load_dotenv

from .config_loader import load_config, PROVIDER_KEYS
from .logging_setup import configure_logging
from .core.chat_session import ChatSessionController
from .core.conversation import Conversation
from .core.models import ChatOptions, ProviderSettings
from .core.prompts import load_behavior_prompt
from .providers.param_policy import ParamPolicy
from .providers.registry import ProviderKey, known_models
from .secrets.sources import SecretsResolver
from .storage.transcript import Transcript


def _policy_path(cfg: Dict[str, Any], provider: str, config_dir: Path) -> Path:
    policy_file = (cfg.get("providers", {}).get(provider) or {}).get("policy_file")
    if policy_file:
        p = Path(policy_file)
        return p if p.is_absolute() else config_dir / p
    # default location: config/providers/<name>.yaml
    return config_dir / "providers" / f"{provider}.yaml"


def load_policies(cfg: Dict[str, Any], config_dir: Path) -> Dict[str, ParamPolicy]:
    policies: Dict[str, ParamPolicy] = {}
    for provider in PROVIDER_KEYS:
        path = _policy_path(cfg, provider, config_dir)
        if path.exists():
            policies[provider] = ParamPolicy.load(path)
    return policies


def options_from_config(cfg: Dict[str, Any]) -> ChatOptions:
    model = cfg["model"]
    chat = cfg.get("chat") or {}
    return ChatOptions(
        provider_settings=ProviderSettings(
            provider=model["provider"],
            model=model["name"],
            api_key=model.get("api_key"),
            use_builtin_key=bool(model.get("use_builtin_key", True)),
        ),
        language=chat.get("language"),
        temperature=chat.get("temperature"),
    )


def apply_overrides(options: ChatOptions, provider: Optional[str] = None, model: Optional[str] = None) -> ChatOptions:
    """Command-line style overrides on top of the YAML defaults. A new provider without a model gets its first catalog model."""
    settings = options.provider_settings
    if provider:
        key = ProviderKey.parse(provider).value
        if key != settings.provider:
            settings = replace(settings, provider=key, model=model or known_models(key)[0])
    if model:
        settings = replace(settings, model=model)
    return replace(options, provider_settings=settings)


def _policy_warnings(cfg: Dict[str, Any], policies: Dict[str, ParamPolicy], config_dir: Path,
                     config_path: Path) -> List[Dict[str, Any]]:
    provider_name = cfg["model"]["provider"]
    model_name = cfg["model"]["name"]
    policy = policies.get(provider_name)
    if policy is None:
        return []
    raw = {**((cfg["providers"].get(provider_name) or {}).get("params") or {}),
           "temperature": cfg["chat"]["temperature"]}
    try:
        effective, _ = policy.evaluate(model_name, raw)
    except ValueError as e:
        return [{"type": "policy_reject", "provider": provider_name, "model": model_name, "message": str(e)}]

    dropped = {k: v for k, v in raw.items() if k not in effective}
    if not dropped:
        return []
    policy_path = _policy_path(cfg, provider_name, config_dir)
    try:
        policy_rel = str(policy_path.relative_to(config_dir))
    except ValueError:
        policy_rel = str(policy_path)
    return [{
        "type": "policy_drop",
        "provider": provider_name,
        "model": model_name,
        "source": f"{config_path.name} → providers.{provider_name}.params",
        "policy": policy_rel,
        "dropped": dropped,
        "message": "Model does not accept these parameters; they were dropped.",
    }]


def build_app(config_path: Path, repo_root: Optional[Path] = None, *, adapter_factory=None) -> Dict[str, Any]:
    """
    Composition root: load YAML, configure logging, wire secrets + policies into
    the controller, and hand back a factory for conversations.
    Returns: dict with cfg, paths, controller, options, warnings, new_conversation.
    """
    load_dotenv()
    config_path = Path(config_path)
    cfg = load_config(config_path)
    config_dir = config_path.resolve().parent
    repo_root = repo_root or Path.cwd()

    configure_logging((cfg.get("logging") or {}).get("level", "WARNING"))

    # ----- Secrets / policies -----
    secrets_cfg = cfg.get("secrets") or {}
    resolver = SecretsResolver(method=secrets_cfg.get("method", "env"), mapping=secrets_cfg.get("mapping", {}))
    policies = load_policies(cfg, config_dir)
    warnings = _policy_warnings(cfg, policies, config_dir, config_path)

    # ----- System prompt -----
    prompt_file = (cfg.get("prompt") or {}).get("system_file")
    prompt_path = None
    if prompt_file:
        prompt_path = Path(prompt_file)
        if not prompt_path.is_absolute():
            prompt_path = config_dir / prompt_path

    controller = ChatSessionController(
        secrets=resolver,
        providers_cfg=cfg["providers"],
        policies=policies,
        adapter_factory=adapter_factory,
        behavior_prompt=load_behavior_prompt(prompt_path),
    )
    options = options_from_config(cfg)

    # ----- Transcript path -----
    tdir_path = Path(cfg["storage"]["transcripts_dir"])
    transcripts_dir = (repo_root / tdir_path).resolve() if not tdir_path.is_absolute() else tdir_path
    backend = cfg["storage"]["backend"]

    def new_conversation(session_id: Optional[str] = None, options_override: Optional[ChatOptions] = None) -> Conversation:
        opts = options_override or options
        transcript = Transcript(
            session_id=session_id,
            root_dir=(transcripts_dir if backend == "file" else None),
            header_meta={
                "config_path": str(config_path),
                "provider": opts.provider_settings.provider,
                "model": opts.provider_settings.model,
            },
        )
        return Conversation(
            controller,
            opts,
            transcript=transcript,
            custom_instructions=cfg["chat"]["custom_instructions"],
        )

    return {
        "cfg": cfg,
        "paths": {"config_dir": config_dir, "repo_root": repo_root, "transcripts_dir": transcripts_dir},
        "controller": controller,
        "options": options,
        "warnings": warnings,
        "new_conversation": new_conversation,
    }
