"""Neural network code.

**Modules**

`nets` : Container class for neural network layers
`layers` : Individual layers which can be assembled into a neural network
`sgd_updates` : Rules for adjusting parameters during stochastic gradient descent
`activations` : Non-linear activation functions used in neural network construction
`losses` : Functions comparing network outputs with targets
`training` : Controllers to run SGD optimization on neural network models
`errors` : Exceptions raised by all of the above
"""
