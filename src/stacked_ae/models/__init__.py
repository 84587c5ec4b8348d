from .autoencoder import SparseAutoencoder, SparseEncoder, SparseDecoder, encode, reconstruct
from .softmax import SoftmaxLayer
from .stacked import StackedNetwork, stack
