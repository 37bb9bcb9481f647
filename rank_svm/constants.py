"""
Constants and Configuration Values
Centralized constants to eliminate magic numbers
"""


# Trainer defaults
class TrainerConstants:
    """Default trainer configuration"""
    DEFAULT_C = 1.0
    DEFAULT_EPSILON = 0.001
    DEFAULT_MAX_ITERATIONS = 10000
    DEFAULT_NUM_THREADS = 1

    # Hinge margin between a relevant and a nonrelevant score
    RANKING_MARGIN = 1.0


# Cutting-plane optimizer
class OptimizerConstants:
    """Constants for the cutting-plane optimizer and its QP subproblem"""
    # Relative tolerance of the QP duality gap, as a fraction of epsilon
    DEFAULT_QP_EPSILON = 0.1
    DEFAULT_QP_MAX_ITERATIONS = 50000

    # Planes unused by this many consecutive QP solutions are dropped
    DEFAULT_INACTIVE_PLANE_THRESHOLD = 20

    # Initial number of rows reserved in the plane arena
    INITIAL_PLANE_CAPACITY = 16

    # Dual weights below this are treated as zero
    ACTIVE_DUAL_THRESHOLD = 1e-12


# Evaluation
class EvaluationConstants:
    """Constants for ranking evaluation"""
    MIN_FOLDS = 2


# Logging Configuration
class LoggingConstants:
    """Constants for logging"""
    PROGRESS_LOG_LEVEL_VERBOSE = "INFO"
    PROGRESS_LOG_LEVEL_QUIET = "DEBUG"
