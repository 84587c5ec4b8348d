from .callbacks import Callback, MetricCallback, EarlyStopping
from .evaluation_callback import EvaluationCallback
