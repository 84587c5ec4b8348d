from .plotting import plot_confusion, plot_images, plot_weights, save_figures_pdf
