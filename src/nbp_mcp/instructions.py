"""Server instructions sent to clients on ``initialize`` (both auth paths)."""

SERVER_INSTRUCTIONS = """\
NBP Exchange Rates: Polish National Bank currency and gold price data.

## Key Capabilities
- Current and historical buy/sell exchange rates (NBP table C, 12 currencies)
- Gold prices (1 g in PLN, from 2013)

## Usage Patterns
- Use getCurrencyRate for a single currency on a single date
- Use getCurrencyHistory for trend analysis (max 93 days per query)
- Use getGoldPrice for gold investment analysis

## Costs
- Every tool costs 1 token per successful call
- Invalid input, missing data and upstream failures are never charged

## Important Notes
- Data is published Mon-Fri only (trading days); weekends and holidays return a "no data" explanation
- Historical data available from 2002-01-02 (rates) and 2013-01-02 (gold)
- Supported currencies: USD, EUR, GBP, CHF, AUD, CAD, SEK, NOK, DKK, JPY, CZK, HUF
"""
