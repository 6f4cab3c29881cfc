import sys
import logging
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent / 'src'))

from portfolio_rebalancer.rebalance_processor import rebalance_runner

logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

config_path = sys.argv[1] if len(sys.argv) > 1 else 'tests/test_data/sample_data/rebalance/config_simple.yaml'
result = rebalance_runner(config_path)
sys.exit(0 if result['status'] == 'success' else 1)
