"""Physical constants and fixed numerical thresholds."""

R_GAS = 8.31446  # J/(mol·K)
REFERENCE_TEMPERATURE = 298.15  # K
REFERENCE_PRESSURE = 1.0e5  # Pa

# Amounts (mol) below this are treated as depleted by the rate floor.
DEPLETION_THRESHOLD = 1.0e-50

# Molar mass of water (kg/mol), the solvent of molalities.
WATER_MOLAR_MASS = 0.018015268
