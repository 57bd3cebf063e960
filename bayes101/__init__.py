"""
bayes101 -- Bayesian and quasi-Bayesian estimation from scratch.

Each sub-module is one section of the notes, written with numpy / scipy
(pandas for summary tables) so the code reads like the algebra:

    ols_posterior  linear regression posteriors (conjugate and independent prior)
    metropolis     random-walk Metropolis-Hastings
    gibbs          block Gibbs sampling
    hmc            Hamiltonian Monte Carlo, leapfrog, dual averaging
    nuts           the No-U-Turn Sampler
    diagnostics    ESS, split-R-hat, MCSE, posterior summaries
    blp            random-coefficients logit shares and their inversion
    quasi_bayes    GMM quasi-posterior (Chernozhukov & Hong)
    checkpoint     .npz caching of long sampler runs
"""

from .utils import add_const, ols_fit, with_gradient
from . import ols_posterior
from . import metropolis
from . import gibbs
from . import hmc
from . import nuts
from . import diagnostics
from . import blp
from . import quasi_bayes
from . import checkpoint
