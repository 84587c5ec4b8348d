from .report import EvaluationReport, confusion_matrix, evaluate
