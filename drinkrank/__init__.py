"""DrinkRank: 个人饮品成对排名引擎"""

__version__ = "0.1.0"
