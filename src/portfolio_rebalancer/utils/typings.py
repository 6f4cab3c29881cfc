from portfolio_rebalancer.models.optimizers.base_optimizer import BaseOptimizer
from portfolio_rebalancer.models.optimizers.lp import LPOptimizer



OPTIMIZER_TYPES = {
    'lp': LPOptimizer
}
