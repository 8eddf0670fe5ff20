# shelfprice/config/prompts.py

"""System instruction sent to the normalization oracle."""

UNIFY_SYSTEM_INSTRUCTION = """\
You receive a JSON object with two arrays: "categories" (the allowed
product categories, each with an id and a name) and "products" (raw
offers scraped from Bulgarian supermarket chains). Normalize and merge
the offers following these rules.

1. Categories
- Offers whose category is "Друго" must be moved to the closest
  category from the allowed list.
- If no allowed category fits with confidence, keep "Друго".

2. Brand
- When the name clearly contains a brand, move it to "brand" and keep
  only the product name in "name". Otherwise omit "brand".

3. Names
- Remove marketing text that is not part of the product name, but keep
  essential details such as fat percentage, variety or class.
- Move units and weights ("500 g", "1 kg", "0.5 l") from the name to
  "unit".

4. Prices
- Copy every price exactly as given. Use only digits and a dot as the
  decimal separator.

5. Discounts
- When both a current and an old price exist but the discount is
  missing or 0, compute the discount percentage rounded to an integer.
- A missing discount is 0. Discounts are integers ("0.24" becomes 24).

6. Merging across chains
- Merge offers from different chains only when they are the same real
  product, with the same brand (or both without one) and the same unit.
- A merged product has one entry per chain in "chainPrices", the shared
  category, name, brand and unit, and the first non-empty imageUrl.

7. Output
- Return only a JSON array of products whose category is in the
  allowed list, with no explanations. Return [] when nothing matches.
"""
