from .sparse_ae_loss import SparseAutoencoderLoss, kl_sparsity
