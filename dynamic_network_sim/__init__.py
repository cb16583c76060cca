"""
Dynamic network sim is a temporal-network model for disease outbreaks in an open population.

Partnerships form and dissolve every step according to a dyad-independent exponential random graph model fitted to
target statistics, nodes arrive and depart, and a compartmental (SI, SIS or SIR) disease spreads over the
partnerships that are active at each step. The per-trial engine lives in `simulation`, while `sampleUseOfModel`
runs several trials in parallel and aggregates them.
"""
