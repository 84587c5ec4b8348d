import numpy as np
import pytest
import torch

from stacked_ae.dataloaders import DIGIT_CLASSES
from stacked_ae.errors import DimensionMismatch
from stacked_ae.evaluation import confusion_matrix, evaluate
from stacked_ae.models import SoftmaxLayer


@pytest.fixture
def identity_classifier():
    layer = SoftmaxLayer(10, 10)
    with torch.no_grad():
        layer.linear.weight.copy_(10.0 * torch.eye(10))
        layer.linear.bias.zero_()
    return layer


def test_perfect_classifier(identity_classifier):
    labels = torch.eye(10)
    report = evaluate(identity_classifier, labels, labels, class_names=DIGIT_CLASSES)

    assert report.accuracy == 1.0
    assert report.total == 10
    assert np.array_equal(report.confusion, np.eye(10, dtype=np.int64))
    assert report.class_names == DIGIT_CLASSES
    assert np.allclose(report.per_class_recall, 1.0)


def test_confusion_rows_are_true_classes(identity_classifier):
    inputs = torch.eye(10)[[0, 0, 1]]
    # the first example is really class 3
    labels = torch.eye(10)[[3, 0, 1]]
    report = evaluate(identity_classifier, inputs, labels)

    assert report.confusion[3, 0] == 1
    assert report.confusion.sum() == report.total == 3
    assert report.accuracy == pytest.approx(2 / 3)
    assert report.confusion.sum(axis=1).tolist()[3] == 1


def test_empty_split_has_zero_accuracy(identity_classifier):
    report = evaluate(identity_classifier, torch.zeros(0, 10), torch.zeros(0, 10))
    assert report.total == 0
    assert report.accuracy == 0.0
    assert report.confusion.shape == (10, 10)


def test_evaluate_restores_training_mode(identity_classifier):
    identity_classifier.train()
    evaluate(identity_classifier, torch.eye(10), torch.eye(10))
    assert identity_classifier.training


def test_evaluate_rejects_mismatches(identity_classifier):
    with pytest.raises(DimensionMismatch):
        evaluate(identity_classifier, torch.eye(10), torch.eye(10)[:5])
    with pytest.raises(DimensionMismatch):
        evaluate(identity_classifier, torch.rand(3, 7), torch.eye(10)[:3])
    with pytest.raises(DimensionMismatch):
        evaluate(identity_classifier, torch.eye(10), torch.eye(10), class_names=("a", "b"))


def test_confusion_matrix_counts_pairs():
    true_idx = torch.tensor([0, 1, 1, 2])
    pred_idx = torch.tensor([0, 2, 1, 2])
    confusion = confusion_matrix(true_idx, pred_idx, 3)
    assert confusion.tolist() == [[1, 0, 0], [0, 1, 1], [0, 0, 1]]


def test_report_to_dict(identity_classifier):
    report = evaluate(identity_classifier, torch.eye(10), torch.eye(10))
    as_dict = report.to_dict()
    assert as_dict["accuracy"] == 1.0
    assert as_dict["class_names"] == [str(i) for i in range(10)]
    assert len(as_dict["confusion"]) == 10
