import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .models import PathFit
from .subset import SubsetSearchResult


def plot_insurance_distribution(df):
    plt.style.use('seaborn-v0_8-darkgrid')

    # --------------------
    # Continuous variables
    # --------------------
    fig_num, axes = plt.subplots(2, 3, figsize=(18, 10))

    sns.histplot(df['age'], ax=axes[0, 0], color='steelblue').set_title('Age Distribution')
    sns.histplot(df['bmi'], ax=axes[0, 1], color='green').set_title('BMI Distribution')
    sns.histplot(df['kids'], ax=axes[0, 2], discrete=True, color='purple').set_title('Kids Distribution')
    sns.histplot(df['exercise'], ax=axes[1, 0], discrete=True, color='orange').set_title('Exercise Days Distribution')
    sns.histplot(df['charges'], ax=axes[1, 1], color='skyblue').set_title('Charges Distribution')
    sns.histplot(np.log(df['charges']), ax=axes[1, 2], color='navy').set_title('log(Charges) Distribution')

    fig_num.tight_layout()

    # --------------------
    # Categorical variables
    # --------------------
    fig_cat, axes = plt.subplots(1, 3, figsize=(15, 5))

    gender_counts = df['gender'].value_counts()
    axes[0].pie(
        gender_counts.values,
        labels=gender_counts.index,
        autopct='%1.1f%%',
        startangle=90
    )
    axes[0].set_title('Distribution of Gender')

    smoker_counts = df['smoker'].value_counts()
    axes[1].bar(
        smoker_counts.index,
        smoker_counts.values,
        color=['#90EE90', '#FFB6C1'][:len(smoker_counts)],
        alpha=0.8,
        edgecolor='black',
        linewidth=2
    )
    axes[1].set_xlabel('Smoking Status')
    axes[1].set_ylabel('Count')
    axes[1].set_title('Smoker Distribution', fontweight='bold')
    axes[1].grid(True, alpha=0.3, axis='y')

    sns.countplot(x='region', data=df, ax=axes[2])
    axes[2].set_title('Distribution of Region')

    fig_cat.tight_layout()
    return fig_num, fig_cat


def plot_cv_curve(path: PathFit, title=None):
    """Mean CV error against log(lambda) with one-SE bars, lambda_min and lambda_1se marked."""
    fig, ax = plt.subplots(figsize=(8, 5))
    log_lambda = np.log(path.lambdas)

    ax.errorbar(log_lambda, path.cv_mean, yerr=path.cv_se, fmt='o', color='firebrick',
                ecolor='lightgray', markersize=3, capsize=2)
    ax.axvline(np.log(path.lambda_min), color='black', linestyle='--', label='lambda_min')
    ax.axvline(np.log(path.lambda_1se), color='gray', linestyle=':', label='lambda_1se')

    ax.set_xlabel('log(lambda)')
    ax.set_ylabel('Mean CV squared error (log scale)')
    ax.set_title(title or f'Cross-validation curve (alpha={path.alpha:g})')
    ax.legend()
    fig.tight_layout()
    return fig


def plot_coefficient_path(path: PathFit, feature_names, title=None):
    fig, ax = plt.subplots(figsize=(8, 5))
    log_lambda = np.log(path.lambdas)
    for j, name in enumerate(feature_names):
        ax.plot(log_lambda, path.coef_path[:, j], label=name)
    ax.axvline(np.log(path.lambda_min), color='black', linestyle='--')
    ax.set_xlabel('log(lambda)')
    ax.set_ylabel('Coefficient')
    ax.set_title(title or f'Coefficient path (alpha={path.alpha:g})')
    ax.legend(fontsize='small', ncol=2)
    fig.tight_layout()
    return fig


def plot_subset_criteria(result: SubsetSearchResult):
    """Cp, adjusted R^2, BIC and CV RMSE by subset size."""
    table = result.table
    fig, axes = plt.subplots(2, 2, figsize=(12, 8))

    panels = [
        ('cp', "Mallows' Cp"),
        ('adj_r2', 'Adjusted R² (log scale)'),
        ('bic', 'BIC'),
        ('cv_rmse', 'CV RMSE (log scale)'),
    ]
    for ax, (col, label) in zip(axes.ravel(), panels):
        ax.plot(table.index, table[col], marker='o')
        ax.axvline(result.best_size, color='gray', linestyle='--')
        ax.set_xlabel('Number of predictors')
        ax.set_ylabel(label)
        ax.grid(True, alpha=0.3)

    fig.suptitle(f'Best subset ({result.method}) selection criteria')
    fig.tight_layout()
    return fig


def plot_coefficients(coefficients: pd.DataFrame):
    """Grouped bar chart of a features x models coefficient table."""
    long = (
        coefficients.rename_axis('feature')
        .reset_index()
        .melt(id_vars='feature', var_name='model', value_name='coefficient')
    )
    fig, ax = plt.subplots(figsize=(12, 6))
    sns.barplot(data=long, x='feature', y='coefficient', hue='model', ax=ax)
    ax.axhline(0, color='black', linewidth=0.8)
    ax.set_title('Coefficients by model (log-charges scale)')
    ax.tick_params(axis='x', rotation=45)
    fig.tight_layout()
    return fig
