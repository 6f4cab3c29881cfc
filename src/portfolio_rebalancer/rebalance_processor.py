"""
Rebalance Processor
Main entry point for running rebalance playbooks from YAML configuration files.
"""

import yaml
from pathlib import Path
from typing import Dict, Any

from portfolio_rebalancer.playbooks.rebalance_playbooks.rebalance_playbook import RebalancePlaybook


PLAYBOOK_TYPES = {
    'portfolio_rebalance': RebalancePlaybook
}

def load_config(config_path: str) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    with open(config_path, 'r') as f:
        return yaml.safe_load(f)


def rebalance_runner(config_path: str, **playbook_kwargs) -> Dict[str, Any]:
    """Main runner for rebalance playbooks."""
    config = load_config(config_path)
    playbook_type = config.get('playbook_type', 'portfolio_rebalance')

    playbook_cls = PLAYBOOK_TYPES.get(playbook_type)
    if playbook_cls is None:
        valid = ", ".join(PLAYBOOK_TYPES.keys())
        raise ValueError(f"Unknown playbook_type {playbook_type!r}. Valid options: {valid}")

    # Relative data paths resolve against the config file's directory
    config.setdefault('base_path', str(Path(config_path).parent))

    playbook = playbook_cls(config, **playbook_kwargs)
    return playbook.execute()
