"""
Losses, pseudo-residuals, leaf step sizes and metrics for the boosting loop.

The tree itself only sees the pseudo-residual vector produced here.

References:
- Friedman, J. H. (2001). Greedy function approximation: A gradient boosting machine.
- Friedman, J., Hastie, T., & Tibshirani, R. (2000). Additive logistic regression:
  a statistical view of boosting (LogitBoost).
"""

import numpy as np
from scipy.special import expit
from sklearn.metrics import mean_squared_error, log_loss, accuracy_score, roc_auc_score


# ===========================
# Loss Functions and Gradients
# ===========================

def mse_loss(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """Mean squared error loss: L(y, f) = 0.5 * (y - f)^2."""
    return float(0.5 * np.mean((y_true - y_pred) ** 2))


def mse_negative_gradient(y_true: np.ndarray, y_pred: np.ndarray) -> np.ndarray:
    """Pseudo-residuals for squared error: -∂L/∂f = y - f."""
    return y_true - y_pred


def mse_optimal_gamma(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """
    Optimal additive step for a region under squared error.

    γ* = argmin_γ Σ (y_i - (f_{m-1}(x_i) + γ))^2, the mean residual.
    """
    return float(np.mean(y_true - y_pred))


def sigmoid(x: np.ndarray) -> np.ndarray:
    """Numerically stable logistic function."""
    return expit(x)


def logistic_loss(y_true: np.ndarray, y_pred_raw: np.ndarray) -> float:
    """
    Binomial deviance for y ∈ {0, 1} and raw scores F:
    L = -y*log(p) - (1-y)*log(1-p), with p = sigmoid(F).
    """
    p = np.clip(sigmoid(y_pred_raw), 1e-15, 1 - 1e-15)
    return float(-np.mean(y_true * np.log(p) + (1 - y_true) * np.log(1 - p)))


def logistic_negative_gradient(y_true: np.ndarray, y_pred_raw: np.ndarray) -> np.ndarray:
    """
    Pseudo-residuals for binomial deviance: y - p, with p = sigmoid(F).

    Reference: Friedman et al. (2000), "Additive logistic regression".
    """
    return y_true - sigmoid(y_pred_raw)


def logistic_optimal_gamma(
    y_true: np.ndarray,
    y_pred_raw: np.ndarray,
    negative_gradients: np.ndarray
) -> float:
    """
    One Newton-Raphson step for the leaf value under binomial deviance:

    γ* = Σ (y_i - p_i) / Σ p_i(1 - p_i)

    Reference: Friedman et al. (2000), LogitBoost Algorithm 6.
    """
    p = sigmoid(y_pred_raw)
    # Hessian diagonal, clipped away from zero
    hessian = np.clip(p * (1 - p), 1e-15, None)
    return float(np.sum(negative_gradients) / np.sum(hessian))


# ===========================
# Metrics
# ===========================

def compute_metrics_regression(y_true: np.ndarray, y_pred: np.ndarray) -> dict:
    """Regression metrics: mse, rmse, mae."""
    mse = mean_squared_error(y_true, y_pred)
    return {
        "mse": mse,
        "rmse": float(np.sqrt(mse)),
        "mae": float(np.mean(np.abs(y_true - y_pred))),
    }


def compute_metrics_classification(y_true: np.ndarray, y_pred_proba: np.ndarray) -> dict:
    """Classification metrics: log_loss, accuracy, roc_auc (nan with a single class)."""
    y_pred = (y_pred_proba >= 0.5).astype(int)
    clipped = np.clip(y_pred_proba, 1e-15, 1 - 1e-15)

    if len(np.unique(y_true)) == 2:
        auc = roc_auc_score(y_true, y_pred_proba)
    else:
        auc = np.nan

    return {
        "log_loss": log_loss(y_true, clipped, labels=[0, 1]),
        "accuracy": accuracy_score(y_true, y_pred),
        "roc_auc": auc,
    }
