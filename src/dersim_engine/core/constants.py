"""Canonical column names, units, and sign conventions.

SIGN CONVENTIONS:
- demand_kw: Positive = site consumption before any DER dispatch
- net_demand_kw: Positive = draw from the grid, negative = export to the grid
- grid_import_kw / grid_export_kw: Nonnegative parts of net demand
- pv_generation_kw: Positive = generation
- bes_charge_kw: Positive = charging (energy into battery)
- bes_discharge_kw: Positive = discharging (energy from battery)
- bes_soc_kwh: Absolute state of charge in kWh
- shift_up_kw / shift_down_kw: Nonnegative deviations from base demand

UNITS:
- Power: kW
- Energy: kWh
- Prices: $/kWh
- Demand charges: $/kW of peak net demand
- Time: minutes (for intervals)
- Timestamps: naive local clock time, one calendar year

NET DEMAND EQUATION:
net_demand_kw = demand_kw - pv_generation_kw + shift_up_kw - shift_down_kw
                + bes_charge_kw - bes_discharge_kw
"""

# Input columns
COL_TIMESTAMP = "timestamp"
COL_DEMAND_KW = "demand_kw"
COL_SOLAR_CAPACITY_FACTOR = "solar_capacity_factor"
COL_SHIFT_UP_CAPACITY_KW = "shift_up_capacity_kw"
COL_SHIFT_DOWN_CAPACITY_KW = "shift_down_capacity_kw"

REQUIRED_INPUT_COLUMNS = [
    COL_DEMAND_KW,
]

OPTIONAL_INPUT_COLUMNS = [
    COL_SOLAR_CAPACITY_FACTOR,
    COL_SHIFT_UP_CAPACITY_KW,
    COL_SHIFT_DOWN_CAPACITY_KW,
]

# Output columns
COL_NET_DEMAND_KW = "net_demand_kw"
COL_GRID_IMPORT_KW = "grid_import_kw"
COL_GRID_EXPORT_KW = "grid_export_kw"
COL_PV_GENERATION_KW = "pv_generation_kw"
COL_BES_CHARGE_KW = "bes_charge_kw"
COL_BES_DISCHARGE_KW = "bes_discharge_kw"
COL_BES_SOC_KWH = "bes_soc_kwh"
COL_SHIFT_UP_KW = "shift_up_kw"
COL_SHIFT_DOWN_KW = "shift_down_kw"
COL_ENERGY_PRICE = "energy_price"
COL_NEM_PRICE = "nem_price"

OUTPUT_COLUMNS = [
    COL_DEMAND_KW,
    COL_NET_DEMAND_KW,
    COL_GRID_IMPORT_KW,
    COL_GRID_EXPORT_KW,
    COL_PV_GENERATION_KW,
    COL_BES_CHARGE_KW,
    COL_BES_DISCHARGE_KW,
    COL_BES_SOC_KWH,
    COL_SHIFT_UP_KW,
    COL_SHIFT_DOWN_KW,
]

# Bill columns
BILL_ENERGY_CHARGE = "energy_charge"
BILL_TIERED_ENERGY_CHARGE = "tiered_energy_charge"
BILL_DEMAND_CHARGE = "demand_charge"
BILL_NEM_REVENUE = "nem_revenue"
BILL_NON_BYPASSABLE_CHARGE = "non_bypassable_charge"
BILL_CUSTOMER_CHARGE = "customer_charge"
BILL_TOTAL_CHARGE = "total_charge"

BILL_COLUMNS = [
    BILL_ENERGY_CHARGE,
    BILL_TIERED_ENERGY_CHARGE,
    BILL_DEMAND_CHARGE,
    BILL_NEM_REVENUE,
    BILL_NON_BYPASSABLE_CHARGE,
    BILL_CUSTOMER_CHARGE,
    BILL_TOTAL_CHARGE,
]

# Label used for the whole-month maximum demand charge
MONTHLY_MAXIMUM_LABEL = "maximum"

# Solvers whose linopy interface accepts a log file path
LOG_FILE_SOLVERS = frozenset({"highs", "gurobi", "cplex", "glpk"})

# Tolerance for numerical comparisons
NUMERICAL_TOLERANCE = 1e-6

# Energy TOU labels used by time-of-use energy-charge scaling
PEAK_LABEL = "peak"
PARTIAL_PEAK_LABEL = "partial-peak"
OFF_PEAK_LABEL = "off-peak"
